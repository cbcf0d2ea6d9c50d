import json
import logging
import re
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from vibe_assistant.core.config import Settings, settings
from vibe_assistant.core.errors import (
    MalformedResponseError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    UnconfiguredError,
    UpstreamError,
)
from vibe_assistant.prompts.insights_prompt import INSIGHTS_SYSTEM_PROMPT, build_insights_prompt
from vibe_assistant.schemas.analysis import InsightsRecord
from vibe_assistant.services.github_service import GitHubService

logger = logging.getLogger(__name__)


def extract_json(content: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of an LLM reply.

    Accepts a bare object, a fenced ```json block, or an object surrounded by
    prose.

    Raises:
        MalformedResponseError: If no JSON object can be parsed.
    """
    cleaned_content = content.strip()
    # More robustly find the JSON block
    json_match = re.search(r"```(?:json)?\s*(\{.*\})\s*```", cleaned_content, re.DOTALL)
    if json_match:
        cleaned_content = json_match.group(1)
    else:
        # Fallback to finding the first and last curly brace
        start_brace = cleaned_content.find('{')
        end_brace = cleaned_content.rfind('}')
        if start_brace != -1 and end_brace > start_brace:
            cleaned_content = cleaned_content[start_brace : end_brace + 1]

    try:
        parsed = json.loads(cleaned_content)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON insights: {cleaned_content[:200]}")
        raise MalformedResponseError("Insights response was not valid JSON") from e

    if not isinstance(parsed, dict):
        raise MalformedResponseError("Insights response was not a JSON object")
    return parsed


# Service responsible for narrative repository insights using Claude via OpenRouter
class InsightsService:
    def __init__(self, github: GitHubService, config: Settings = settings) -> None:
        """Client will be created per-request."""
        self.github = github
        self.api_key: Optional[str] = config.OPENROUTER_API_KEY
        self.base_url: str = config.OPENROUTER_BASE_URL
        self.model: str = config.INSIGHTS_MODEL

    async def fetch_insights(self, target: str) -> InsightsRecord:
        """
        Generate insights for a repository.

        Args:
            target: Repository URL or owner/repo.

        Returns:
            The validated insights.

        Raises:
            UnconfiguredError: If no OpenRouter API key is configured.
            CollaboratorError: For GitHub or LLM provider failures and for
                replies that do not match the expected shape.
        """
        if not self.api_key:
            raise UnconfiguredError(
                "No OpenRouter API key available. Set OPENROUTER_API_KEY to enable insights."
            )

        owner, repo = self.github.parse_github_url(target)
        snapshot = await self.github.get_repository_snapshot(owner, repo)

        content = await self._complete(build_insights_prompt(snapshot), f"{owner}/{repo}")
        if not content or not content.strip():
            raise MalformedResponseError("Insights response was empty")

        data = extract_json(content)

        # The model answers with a single recommendation string
        recommendations = data.get("recommendations")
        if recommendations is None:
            recommendation = data.get("recommendation")
            recommendations = [recommendation] if recommendation else []
        elif isinstance(recommendations, str):
            recommendations = [recommendations]

        activity = data.get("activity")
        if isinstance(activity, str):
            activity = activity.strip().lower()

        try:
            return InsightsRecord.model_validate({
                **data,
                "recommendations": recommendations,
                "activity": activity,
                "model": self.model,
            })
        except ValidationError as e:
            raise MalformedResponseError(f"Insights response had an unexpected shape: {e}") from e

    async def _complete(self, prompt: str, name: str) -> Optional[str]:
        """One chat completion; provider errors are mapped onto the collaborator taxonomy."""
        client = AsyncOpenAI(base_url=self.base_url, api_key=self.api_key)

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": INSIGHTS_SYSTEM_PROMPT},
                    {"role": "user", "content": f"Assess this repository:\n\n{prompt}"},
                ],
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.error(f"LLM provider rejected credentials for {name}: {e}")
            raise UnauthorizedError("LLM provider rejected the API key") from e
        except openai.RateLimitError as e:
            logger.warning(f"LLM provider rate limit hit for {name}")
            raise RateLimitedError("LLM provider rate limit exceeded. Please try again later.") from e
        except openai.NotFoundError as e:
            raise NotFoundError(f"Model {self.model} not found at the LLM provider") from e
        except openai.APIConnectionError as e:
            # Also covers APITimeoutError
            logger.error(f"Could not reach LLM provider for {name}: {e}")
            raise UpstreamError("Could not reach the LLM provider") from e
        except openai.APIStatusError as e:
            logger.error(f"LLM provider returned {e.status_code} for {name}")
            raise UpstreamError(f"LLM provider returned {e.status_code}", status_code=e.status_code) from e

        if not response.choices:
            raise MalformedResponseError("Insights response had no choices")
        return response.choices[0].message.content
