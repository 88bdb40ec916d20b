import logging

from anthropic import AnthropicError
from openai import OpenAIError

from ..agent.llm import LLMProvider
from ..errors import CapabilityFailure
from ..schemas import LogisticsPlan, TripRequest, parse_structured, schema_for_prompt

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a travel agent expert."

REVISE_BUDGET_NOTE = "You may need to revise your budget."


def build_logistics_prompt(trip: TripRequest) -> str:
    return f"""Generate the best flight and hotel plan for this trip:

Origin: {trip.flyingFrom}
Destination: {trip.destination}
Travel dates: {trip.fromDate} to {trip.toDate}
Travelers: {trip.travelers}
Budget: ${trip.budget:g}
Trip type: {trip.tripType}

Guidelines:
- Suggest ONE flight (direct or with layover - prefer direct, then the shortest layover and cheapest option)
- Use "direct" as the layover for a direct flight
- Suggest ONE 4-5 star hotel in the destination city
- All prices should be realistic and fit within the budget for all travelers
- totalEstimatedCost MUST equal the flight price plus the hotel price
- If the total exceeds the budget, state "{REVISE_BUDGET_NOTE}" in conclusion; otherwise do not
- Include exactly 3 activities with emojis relevant to the {trip.tripType} trip type
- Consider economy seats for the flight
- Prices don't need to be real but should be realistic for the budget and number of travelers

For flightRecommendation, use format like: "The best option for you is with Delta Airlines with a layover in Oslo priced at $1200"
For hotelRecommendation, use format like: "We recommend you stay at the 4 star Premiere Inn hotel in central Paris, priced at $800"

Return a JSON object matching this JSON schema:
{schema_for_prompt(LogisticsPlan)}"""


def reconcile_conclusion(plan: LogisticsPlan, budget: float) -> LogisticsPlan:
    """Make the conclusion agree with whether the total exceeds the budget.

    A conclusion that already agrees is kept as written. One that contradicts
    the numbers is replaced with a plain statement of the comparison.
    """
    over_budget = plan.totalEstimatedCost > budget
    if over_budget == (REVISE_BUDGET_NOTE.lower() in plan.conclusion.lower()):
        return plan

    total = f"${plan.totalEstimatedCost:,.0f}"
    limit = f"${budget:,.0f}"
    if over_budget:
        conclusion = f"The estimated total of {total} exceeds your {limit} budget. {REVISE_BUDGET_NOTE}"
    else:
        conclusion = f"The estimated total of {total} fits within your {limit} budget."
    logger.info(f"Conclusion rewritten to match budget (over budget: {over_budget})")
    return plan.model_copy(update={"conclusion": conclusion})


async def plan_logistics(llm: LLMProvider, trip: TripRequest) -> LogisticsPlan:
    """Ask the model for one flight, one hotel and three activities.

    Single attempt. Model errors raise CapabilityFailure; malformed output
    raises SchemaViolation.
    """
    logger.info(f"Generating logistics plan for {trip.flyingFrom} -> {trip.destination}")
    try:
        text = await llm.generate_text(build_logistics_prompt(trip), system_prompt=SYSTEM_PROMPT, json_mode=True)
    except (OpenAIError, AnthropicError) as e:
        raise CapabilityFailure(f"logistics model call failed: {e}") from e

    plan = parse_structured(text, LogisticsPlan)
    return reconcile_conclusion(plan, trip.budget)
