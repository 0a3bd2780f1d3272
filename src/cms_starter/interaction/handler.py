"""User interaction handlers (questionnaire, credential prompts, confirmations)."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt

logger = logging.getLogger(__name__)

# 返回错误信息（无效）或 None（有效）
Validator = Callable[[str], Optional[str]]


class InputType(str, Enum):
    """Type of user input expected."""
    CHOICE = "choice"       # 选择题，从options中选择
    TEXT = "text"           # 自由文本输入
    CONFIRM = "confirm"     # 是/否确认
    SECRET = "secret"       # 敏感信息（密码、token）


class QuestionCategory(str, Enum):
    """Category of questions for context."""
    PROJECT = "project"             # 项目问卷
    CREDENTIALS = "credentials"     # 缺失的 API token
    CONFIRMATION = "confirmation"   # 确认破坏性操作


@dataclass
class InteractionRequest:
    """A question put to the user."""

    question: str
    input_type: InputType = InputType.TEXT
    key: Optional[str] = None                   # 稳定标识，供自动应答匹配
    options: List[str] = field(default_factory=list)
    category: QuestionCategory = QuestionCategory.PROJECT
    context: Optional[str] = None
    default: Optional[str] = None
    validator: Optional[Validator] = None

    def validate(self, value: str) -> Optional[str]:
        if self.input_type == InputType.CHOICE and self.options and value not in self.options:
            return f"Choose one of: {', '.join(self.options)}"
        if self.validator is None:
            return None
        return self.validator(value)


@dataclass
class InteractionResponse:
    """User's response to an interaction request."""

    value: str
    cancelled: bool = False

    @property
    def confirmed(self) -> bool:
        return not self.cancelled and self.value.lower() in ("y", "yes", "true")

    @classmethod
    def cancelled_response(cls) -> "InteractionResponse":
        return cls(value="", cancelled=True)


class UserInteractionHandler(ABC):
    """Abstract base class for handling user interactions."""

    @abstractmethod
    def ask(self, request: InteractionRequest) -> InteractionResponse:
        """
        Present a request to the user and get their response.

        Args:
            request: The interaction request to present

        Returns:
            The user's response
        """

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """
        Send a notification to the user (no response needed).

        Args:
            message: The message to display
            level: Severity level (info, warning, error, success)
        """


class CLIInteractionHandler(UserInteractionHandler):
    """Terminal handler built on rich prompts."""

    _STYLES = {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "green",
    }

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        if request.context:
            self.console.print(f"[dim]{request.context}[/dim]")
        try:
            if request.input_type == InputType.CONFIRM:
                default = (request.default or "n").lower().startswith("y")
                answer = Confirm.ask(request.question, default=default, console=self.console)
                return InteractionResponse(value="yes" if answer else "no")
            return self._ask_until_valid(request)
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n   (cancelled)")
            return InteractionResponse.cancelled_response()

    def _ask_until_valid(self, request: InteractionRequest) -> InteractionResponse:
        while True:
            value = Prompt.ask(
                request.question,
                console=self.console,
                password=request.input_type == InputType.SECRET,
                choices=request.options or None,
                default=request.default,
            )
            value = (value or "").strip()
            problem = request.validate(value)
            if problem is None:
                return InteractionResponse(value=value)
            self.console.print(f"   [red]❌ {problem}[/red]")

    def notify(self, message: str, level: str = "info") -> None:
        style = self._STYLES.get(level, "")
        self.console.print(f"[{style}]{message}[/{style}]" if style else message)


class AutoResponseHandler(UserInteractionHandler):
    """
    Automatic response handler for testing or non-interactive mode.

    Answers come from `responses`, matched first on the request key and then
    on a case-insensitive keyword found in the question. Unmatched requests
    fall back to their default; anything still unanswered is cancelled.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, str]] = None,
        always_confirm: bool = True,
    ) -> None:
        self.responses = responses or {}
        self.always_confirm = always_confirm
        self.asked: List[InteractionRequest] = []
        self.notifications: List[str] = []

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        self.asked.append(request)
        logger.debug("Auto-responding to: %s", request.question[:60])

        if request.key and request.key in self.responses:
            return InteractionResponse(value=self.responses[request.key])
        for keyword, response in self.responses.items():
            if keyword.lower() in request.question.lower():
                return InteractionResponse(value=response)

        if request.input_type == InputType.CONFIRM:
            return InteractionResponse(value="yes" if self.always_confirm else "no")
        if request.default is not None:
            return InteractionResponse(value=request.default)
        return InteractionResponse.cancelled_response()

    def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append(message)
        logger.info("[%s] %s", level, message)
