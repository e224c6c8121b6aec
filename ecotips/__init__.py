"""Eco tip generation through the OpenAI chat completions API.

Tips are requested in JSON mode and must carry ``title``, ``content`` and
``icon``. Without an API key, or on any failure, a predefined tip for the
category is returned instead.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
DEVELOPMENT_KEY = "dummy-key-for-development"

SYSTEM_PROMPT = (
    "You are an environmental sustainability expert providing extremely specific "
    "eco-friendly tips. Focus exclusively on the exact query provided by the user. "
    "Always include the specific topic by name in both title and content. Provide "
    "detailed implementation steps, not generalized advice. Include real-world "
    "resources when relevant."
)

RESPONSE_FORMAT = """

Format the response as JSON with these fields:
- title: A short, specific title that explicitly mentions what the tip is about (maximum 50 characters)
- content: Detailed, specific advice with practical steps (maximum 250 characters). Say how to do it, where to take items if relevant, and what is needed.
- icon: A single Font Awesome icon name that represents this tip (e.g. 'recycle', 'leaf', 'tint', 'trash', 'seedling')

The tip should be factual, environmentally sound, and focused on reducing waste or improving recycling habits."""

FALLBACK_TIPS = {
    "water": {
        "title": "Save Water With Shower Buckets",
        "content": "Place a bucket in your shower to catch excess water while waiting for it to warm up, then use it to water plants.",
        "icon": "tint"
    },
    "energy": {
        "title": "Unplug To Save Energy",
        "content": "Unplug electronics and chargers when not in use. Even when turned off, they consume standby power.",
        "icon": "bolt"
    },
    "waste": {
        "title": "Zero-Waste Shopping",
        "content": "Bring your own containers to bulk stores and farmers markets to reduce packaging waste.",
        "icon": "shopping-basket"
    },
    "plastic": {
        "title": "Ditch Single-Use Plastics",
        "content": "Replace disposable items with reusable alternatives like metal straws, cloth bags, and glass containers.",
        "icon": "ban"
    },
    "composting": {
        "title": "Start Simple Composting",
        "content": "Begin composting with fruit and vegetable scraps, coffee grounds, and eggshells in a small kitchen bin.",
        "icon": "seedling"
    },
    "recycling": {
        "title": "Proper Recycling Techniques",
        "content": "Rinse containers before recycling and learn your local recycling rules to maximize effectiveness.",
        "icon": "recycle"
    },
    "transportation": {
        "title": "Green Commuting",
        "content": "Try biking, walking, or public transportation once a week instead of driving to reduce carbon emissions.",
        "icon": "bicycle"
    }
}

DEFAULT_TIP = {
    "title": "Eco-Friendly Daily Habits",
    "content": "Incorporate one new sustainable habit each week, like using reusable water bottles or turning off lights when leaving a room.",
    "icon": "leaf"
}


class EcoTipError(Exception):
    """Raised when the tip service returns nothing usable."""
    pass


def get_fallback_tip(category: str) -> Dict[str, str]:
    return dict(FALLBACK_TIPS.get(category, DEFAULT_TIP))


def build_prompt(category: str, custom_prompt: Optional[str] = None) -> str:
    if custom_prompt:
        prompt = (
            f'Generate a highly specific eco-friendly tip that directly addresses this exact '
            f'user query: "{custom_prompt}". Mention "{custom_prompt}" by name in both the '
            f'title and the content, avoid generic advice about {category}, and include '
            f'concrete methods, steps or resources.'
        )
    else:
        prompt = (
            f'Generate a practical eco-friendly tip related to "{category}". The tip should '
            f'be actionable advice for sustainable living that users of the PipaPal waste '
            f'management app can immediately implement.'
        )
    return prompt + RESPONSE_FORMAT


class EcoTipGenerator:
    """Client for the chat completions endpoint."""

    def __init__(self, settings: Dict[str, Any], session: Optional[requests.Session] = None):
        self.api_key = settings.get('openai_api_key') or ''
        self.model = settings.get('openai_model', 'gpt-4o')
        self.timeout = settings.get('openai_timeout', 15)
        self.session = session or requests.Session()
        self.session.headers['content-type'] = 'application/json'

    @property
    def enabled(self) -> bool:
        return bool(self.api_key) and self.api_key != DEVELOPMENT_KEY

    def request_tip(self, category: str, custom_prompt: Optional[str] = None) -> Dict[str, str]:
        """Call the API synchronously.

        Raises:
            EcoTipError: On transport errors or a malformed response
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(category, custom_prompt)}
            ],
            "response_format": {"type": "json_object"}
        }

        try:
            response = self.session.post(
                OPENAI_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout
            )
            response.raise_for_status()
            content = response.json()['choices'][0]['message']['content'] or '{}'
            tip = json.loads(content)
        except requests.exceptions.Timeout as e:
            raise EcoTipError(f"Request timed out after {self.timeout} seconds") from e
        except requests.exceptions.RequestException as e:
            raise EcoTipError(f"Request failed: {str(e)}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EcoTipError(f"Invalid response format: {str(e)}") from e

        if not isinstance(tip, dict) or not all(tip.get(k) for k in ('title', 'content', 'icon')):
            raise EcoTipError("Response is missing title, content or icon")
        return {k: str(tip[k]) for k in ('title', 'content', 'icon')}

    async def generate(self, category: str, custom_prompt: Optional[str] = None) -> Dict[str, str]:
        """Generate a tip, falling back to the predefined table on any failure."""
        if not self.enabled:
            return get_fallback_tip(category)

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self.request_tip, category, custom_prompt)
        except EcoTipError as e:
            logger.error(f"Error generating eco tip: {e}")
            logger.info(f"Using fallback tip for category {category}")
            return get_fallback_tip(category)


__all__ = [
    'EcoTipGenerator',
    'EcoTipError',
    'FALLBACK_TIPS',
    'DEFAULT_TIP',
    'get_fallback_tip',
    'build_prompt'
]
