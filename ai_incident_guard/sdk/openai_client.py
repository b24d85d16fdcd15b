"""
Guarded OpenAI client wrapper.

Applies a project's active remediation constraints before each call and
logs every call, successful or not, so detection sees the real traffic.
"""

import time
from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..config.loader import AppConfig
from ..core.ingestion import LogRequestInput, log_request
from ..core.rate_limit import SlidingWindowRateLimiter
from ..core.remediation import RequestContext, enforce_constraints, get_project_settings
from ..storage.repository import Repositories


class GuardedOpenAI:
    """OpenAI client wrapper that enforces constraints and records requests.

    Constraint violations are raised before the API is called. API failures
    are recorded as failed requests and then re-raised unchanged.
    """

    def __init__(
        self,
        project_id: str,
        model: str,
        endpoint: str = "chat",
        db_path: Optional[str] = None,
        config: Optional[AppConfig] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        client: Optional[OpenAI] = None,
    ):
        """Initialize guarded OpenAI client.

        Args:
            project_id: Registered project the calls belong to (required)
            model: Requested OpenAI model name (required)
            endpoint: Logical endpoint name that constraints can disable
            db_path: Database file path (defaults to the configured one)
            config: Application configuration
            rate_limiter: Shared limiter; one per client when omitted
            client: Preconfigured OpenAI client

        Raises:
            ValueError: If project_id or model is missing/empty, or the project is not registered
        """
        if not project_id or not project_id.strip():
            raise ValueError("project_id is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.project_id = project_id
        self.model = model
        self.endpoint = endpoint
        self.config = config or AppConfig.default()
        self.repos = Repositories.for_path(db_path or self.config.database.path)
        if not self.repos.projects.exists(project_id):
            raise ValueError(f"project '{project_id}' is not registered")
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.client = client or OpenAI()

    def chat(
        self,
        messages: List[Dict[str, str]],
        user_id: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion under the project's constraints.

        Args:
            messages: List of message dictionaries (required)
            user_id: Caller identity for per-user rate limits
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response

        Raises:
            ValueError: If messages is empty
            ConstraintViolation: If an active constraint rejects the call
            OpenAI API errors: Propagated after the failure is recorded
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        prompt = "\n".join(
            str(m.get("content", "")) for m in messages if m.get("role") != "system"
        )
        caller_system = next(
            (str(m.get("content", "")) for m in messages if m.get("role") == "system"), None
        )

        settings = get_project_settings(self.project_id, self.repos.settings, self.config)
        enforced = enforce_constraints(
            settings,
            RequestContext(
                prompt=prompt,
                model=self.model,
                endpoint=self.endpoint,
                user_id=user_id,
                system_prompt=caller_system,
            ),
            self.rate_limiter,
            self.config.scoring,
        )

        outgoing = [m for m in messages if m.get("role") != "system"]
        if enforced.system_prompt:
            outgoing.insert(0, {"role": "system", "content": enforced.system_prompt})

        started = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=enforced.model,
                messages=outgoing,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except Exception as e:
            self._record(
                prompt, "(request failed)", enforced.model, started, 0,
                error=str(e) or type(e).__name__,
            )
            raise

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""
        tokens = response.usage.total_tokens if response.usage else 0
        self._record(prompt, content or "(empty response)", enforced.model, started, tokens)
        return response

    def _record(self, prompt: str, response: str, model: str, started: float, tokens: int, error: Optional[str] = None):
        latency_ms = (time.perf_counter() - started) * 1000
        return log_request(
            self.project_id,
            LogRequestInput(
                prompt=prompt or "(empty prompt)",
                response=response,
                model=model,
                latency_ms=latency_ms,
                tokens=tokens,
                error=error,
            ),
            self.repos.requests,
            self.repos.projects,
            self.config.scoring,
        )
