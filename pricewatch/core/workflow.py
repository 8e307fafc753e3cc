"""
Price intelligence workflow orchestration using LangGraph.

The graph is linear: check_user_limits -> search_products -> analyze_market
-> predict_trends -> generate_recommendations. A stage that raises records
``error``/``failed_stage`` in the state and the graph routes straight to END,
so no later stage runs on a failed pipeline. The first stage takes a slot from
the weekly gate; the caller gives it back if the run does not complete.
"""

import functools
import logging

from langgraph.graph import END, StateGraph

from pricewatch.agents.product_intelligence import ProductIntelligenceService
from pricewatch.core.database import Database
from pricewatch.core.errors import NoProductsFound, UserNotFound
from pricewatch.core.recommendations import generate_recommendation
from pricewatch.core.user_quota import UserQuotaGate
from pricewatch.models import WorkflowState

logger = logging.getLogger(__name__)

STAGE_ORDER = [
    "check_user_limits",
    "search_products",
    "analyze_market",
    "predict_trends",
    "generate_recommendations",
]


def _stage(name: str, label: str):
    """Turn an exception raised by a stage into a failed workflow state."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, state: WorkflowState) -> dict:
            try:
                return await func(self, state)
            except Exception as e:
                logger.error(f"❌ {label} failed: {e}")
                return {"error": f"{label} failed: {e}", "failed_stage": name, "failure": e}

        return wrapper

    return decorator


def _route_after_stage(state: WorkflowState) -> str:
    return "failed" if state.get("error") else "continue"


class PriceIntelligenceWorkflow:
    """Runs one search request through the five pipeline stages."""

    def __init__(self, intelligence: ProductIntelligenceService, user_gate: UserQuotaGate, database: Database):
        self.intelligence = intelligence
        self.user_gate = user_gate
        self.database = database
        self.graph = self._create_workflow()

    def _create_workflow(self):
        """Create and compile the workflow graph."""
        workflow = StateGraph(WorkflowState)

        workflow.add_node("check_user_limits", self.check_user_limits)
        workflow.add_node("search_products", self.search_products)
        workflow.add_node("analyze_market", self.analyze_market)
        workflow.add_node("predict_trends", self.predict_trends)
        workflow.add_node("generate_recommendations", self.generate_recommendations)

        workflow.set_entry_point(STAGE_ORDER[0])
        for current, following in zip(STAGE_ORDER, STAGE_ORDER[1:]):
            workflow.add_conditional_edges(
                current,
                _route_after_stage,
                {"continue": following, "failed": END},
            )
        workflow.add_edge(STAGE_ORDER[-1], END)

        return workflow.compile()

    async def run(self, query: str, user_id: str) -> WorkflowState:
        """
        Execute the workflow for one query.

        Returns:
            The final state; ``error`` and ``failed_stage`` are set if a
            stage failed, and ``trace`` lists one message per completed stage
        """
        initial_state = WorkflowState(
            query=query,
            user_id=user_id,
            quota_reserved=False,
            search_results=[],
            market_analysis=None,
            price_prediction=None,
            recommendation=None,
            trace=[],
            error=None,
            failed_stage=None,
            failure=None,
        )
        return await self.graph.ainvoke(initial_state, {"recursion_limit": 10})

    @_stage("check_user_limits", "Limit check")
    async def check_user_limits(self, state: WorkflowState) -> dict:
        logger.info("---AGENT: Check User Limits---")
        user = await self.database.get_user(state["user_id"])
        if not user:
            raise UserNotFound(state["user_id"])

        await self.user_gate.reserve(user.user_id)
        return {"quota_reserved": True, "trace": ["User limits checked successfully"]}

    @_stage("search_products", "Search")
    async def search_products(self, state: WorkflowState) -> dict:
        logger.info("---AGENT: Search Products---")
        logger.info(f"🔍 Searching for products: {state['query']}")

        products = await self.intelligence.search_across_platforms(state["query"])
        if not products:
            raise NoProductsFound("No products found for the given query")

        for i, product in enumerate(products, 1):
            logger.info(f"   {i}. {product.platform.value}: {product.title} - ₹{product.price}")
        return {
            "search_results": products,
            "trace": [f"Found {len(products)} products across platforms"],
        }

    @_stage("analyze_market", "Market analysis")
    async def analyze_market(self, state: WorkflowState) -> dict:
        logger.info("---AGENT: Market Analysis---")
        analysis = await self.intelligence.analyze_market(state["search_results"])

        best = analysis.best_deal
        return {
            "market_analysis": analysis,
            "trace": [f"Market analysis completed. Best deal: ₹{best.price} on {best.platform}"],
        }

    @_stage("predict_trends", "Price prediction")
    async def predict_trends(self, state: WorkflowState) -> dict:
        logger.info("---AGENT: Price Prediction---")
        prediction = await self.intelligence.predict_price_trends(state["search_results"])

        return {
            "price_prediction": prediction,
            "trace": [f"Price prediction completed. Confidence: {prediction.confidence}%"],
        }

    @_stage("generate_recommendations", "Recommendation generation")
    async def generate_recommendations(self, state: WorkflowState) -> dict:
        logger.info("---AGENT: Recommendations---")
        recommendation = generate_recommendation(state["market_analysis"], state["price_prediction"])

        logger.info(f"💡 {recommendation.action.value}: {recommendation.rationale}")
        return {
            "recommendation": recommendation,
            "trace": [f"Recommendations generated: {recommendation.action.value}"],
        }
