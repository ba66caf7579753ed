"""
Jinja2 template engine for transactional return emails.

Each email is a template family under ``returnflow/templates/notifications``:
``<name>_subject.txt``, ``<name>.html`` and an optional ``<name>.txt``.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from returnflow.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates" / "notifications"


class TemplateEngineError(Exception):
    """Base exception for template engine errors."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateNotFoundError(TemplateEngineError):
    """Raised when a template cannot be found."""

    pass


class TemplateRenderError(TemplateEngineError):
    """Raised when template rendering fails."""

    pass


class TemplateEngine:
    """Renders email template families with Jinja2."""

    def __init__(self, template_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the template engine.

        Args:
            template_dir: Directory containing template files, defaults to the
                templates shipped with the package
        """
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = self._format_currency
        self.env.filters["date"] = self._format_date
        self.env.filters["short_id"] = self._short_id

    def _load_template(self, template_path: str) -> Template:
        return self.env.get_template(template_path)

    def render_email(self, template_name: str, context: Dict[str, Any]) -> Dict[str, str]:
        """
        Render an email template family.

        Args:
            template_name: Template family name (without suffix)
            context: Variables available to the templates

        Returns:
            Dictionary with ``subject``, ``html_body`` and, when a text
            template exists, ``text_body``

        Raises:
            TemplateNotFoundError: If the subject or HTML template is missing
            TemplateRenderError: If rendering fails
        """
        try:
            subject = self._load_template(f"{template_name}_subject.txt").render(**context)
            html_body = self._load_template(f"{template_name}.html").render(**context)

            result = {"subject": subject.strip(), "html_body": html_body}
            try:
                result["text_body"] = self._load_template(f"{template_name}.txt").render(
                    **context
                )
            except TemplateNotFound:
                logger.debug("Text template not found", template_name=template_name)

            return result

        except TemplateNotFound as e:
            logger.error("Email template not found", template_name=template_name)
            raise TemplateNotFoundError(
                f"Email template not found: {template_name}",
                template_name=template_name,
            ) from e
        except TemplateError as e:
            logger.error(
                "Email template rendering failed",
                template_name=template_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TemplateRenderError(
                f"Failed to render email template: {e}",
                template_name=template_name,
            ) from e

    @staticmethod
    def _format_currency(value: Union[Decimal, float, int]) -> str:
        """Format an amount in euros, e.g. ``€ 49,95``."""
        formatted = f"{Decimal(str(value)):,.2f}"
        return "€ " + formatted.replace(",", "_").replace(".", ",").replace("_", ".")

    @staticmethod
    def _format_date(value: Union[datetime, str]) -> str:
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return value
        return value.strftime("%d-%m-%Y")

    @staticmethod
    def _short_id(value: Any) -> str:
        """First eight characters of an identifier, upper-cased."""
        return str(value)[:8].upper()
