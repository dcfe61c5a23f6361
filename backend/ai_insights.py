"""
AI-generated business insight for the dashboard, using LiteLLM.
Works with any provider LiteLLM routes to (Gemini by default).

The dashboard must always render, so generate_insight never raises: it
returns a fixed fallback sentence when the model is unreachable or silent.
"""

from litellm import acompletion
from litellm.exceptions import APIError
import logging
from typing import Sequence
from config import settings
from product_utils import is_low_stock

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_FALLBACK = "Review your inventory levels to ensure optimal performance."
UNAVAILABLE_FALLBACK = "AI insights are currently unavailable. Please check network connection."

MAX_LOW_STOCK_ITEMS = 20
MAX_RECENT_SALES = 10
MAX_CATEGORIES = 10


def build_insight_prompt(products: Sequence, transactions: Sequence) -> str:
    """
    Summarize the visible inventory and sales into a short prompt.

    `transactions` are expected newest first; only the first few totals are sent.
    """
    low_stock = [p.name for p in products if is_low_stock(p)][:MAX_LOW_STOCK_ITEMS]
    recent_sales = ", ".join(f"{t.total_amount:.2f}" for t in list(transactions)[:MAX_RECENT_SALES])

    categories = []
    for p in products:
        if p.category not in categories:
            categories.append(p.category)

    return (
        f"You are an AI business analyst for a pharmacy named {settings.APP_NAME}.\n"
        f"Analyze the following brief snapshot of data:\n"
        f"- Top Categories: {', '.join(categories[:MAX_CATEGORIES])}\n"
        f"- Critical Items needing restock (max {MAX_LOW_STOCK_ITEMS} listed): "
        f"{', '.join(low_stock) if low_stock else 'None'}\n"
        f"- Recent transaction values: {recent_sales}\n\n"
        f"Provide a concise, professional, 2-sentence insight or actionable advice for the "
        f"pharmacy manager to improve efficiency or sales. Focus on inventory optimization "
        f"or sales trends. Do not use markdown formatting."
    )


async def generate_insight(products: Sequence, transactions: Sequence) -> str:
    """Ask the configured model for a two-sentence insight."""
    if not settings.AI_INSIGHTS_ENABLED or not settings.AI_API_KEY:
        logger.info("AI insights disabled or API key not configured")
        return UNAVAILABLE_FALLBACK

    prompt = build_insight_prompt(products, transactions)

    try:
        response = await acompletion(
            model=settings.AI_MODEL,  # e.g., "gemini/gemini-2.5-flash"
            messages=[{"role": "user", "content": prompt}],
            max_tokens=settings.AI_MAX_TOKENS,
            api_key=settings.AI_API_KEY,
            timeout=10.0
        )
        text = (response.choices[0].message.content or "").strip()
    except APIError as e:
        logger.error(f"LiteLLM API error: {e}")
        return UNAVAILABLE_FALLBACK
    except Exception as e:
        logger.error(f"AI insight generation failed: {e}")
        return UNAVAILABLE_FALLBACK

    if not text:
        logger.warning("AI returned an empty insight")
        return EMPTY_RESPONSE_FALLBACK

    return text
