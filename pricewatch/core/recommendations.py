"""
Purchase recommendations derived from a market analysis and a price prediction.
"""

from pricewatch.models import Action, MarketAnalysis, MarketTrend, PriceInsights, PricePrediction, Recommendation


def _price(value: float) -> str:
    return f"₹{value:,.0f}"


def generate_recommendation(analysis: MarketAnalysis, prediction: PricePrediction) -> Recommendation:
    """
    Decide between buying now, waiting and monitoring.

    A confident ``buy_now`` from the analysis wins; a falling market or a
    confident prediction means waiting; anything else is monitored.
    """
    best_deal = analysis.best_deal
    confidence = min(analysis.confidence, prediction.confidence)
    predicted = f"{_price(prediction.next_period_range.min)}-{_price(prediction.next_period_range.max)}"
    # Shared by every branch: how much the best deal saves against the average, and the ranges
    common = {
        "confidence": confidence,
        "savings": round(max(0.0, analysis.average_price - best_deal.price), 2),
        "price_insights": PriceInsights(
            current_range=f"{_price(analysis.price_range.min)} - {_price(analysis.price_range.max)}",
            predicted_range=f"{_price(prediction.next_period_range.min)} - {_price(prediction.next_period_range.max)}",
            trend=analysis.market_trend,
            confidence=confidence,
        ),
    }

    if analysis.recommended_action == Action.BUY_NOW and analysis.confidence > 70:
        reasons = [
            f"Best deal available with {analysis.confidence}% confidence",
            best_deal.reason,
            f"Market trend is {analysis.market_trend.value}",
        ]
        return Recommendation(
            action=Action.BUY_NOW,
            rationale="; ".join(r for r in reasons if r),
            **common,
            target_price=best_deal.price,
            platform=best_deal.platform,
            time_frame="now",
            urgency="high",
            alternatives=["Set price alert for better deals", "Compare with offline stores"],
        )

    if analysis.market_trend == MarketTrend.FALLING or prediction.confidence > 80:
        reasons = [
            f"Prices expected to drop ({analysis.market_trend.value} trend)",
            prediction.best_time_to_buy,
            f"Predicted range: {predicted}",
        ]
        return Recommendation(
            action=Action.WAIT,
            rationale="; ".join(r for r in reasons if r),
            **common,
            target_price=prediction.next_period_range.min,
            platform=best_deal.platform,
            time_frame=prediction.best_time_to_buy or None,
            urgency="low",
            alternatives=[
                "Set price alerts",
                "Monitor for 1 week",
                f"Current best option: {best_deal.platform} at {_price(best_deal.price)}",
            ],
        )

    reasons = [
        "Market conditions are uncertain",
        f"Average price: {_price(analysis.average_price)}",
        "Consider your urgency to purchase",
    ]
    return Recommendation(
        action=Action.MONITOR,
        rationale="; ".join(reasons),
        **common,
        target_price=best_deal.price,
        platform=best_deal.platform,
        time_frame="3-5 days",
        urgency="medium",
        alternatives=[
            f"Buy from {best_deal.platform} if urgent",
            "Wait 3-5 days for more data",
            "Set multiple price alerts",
        ],
    )
