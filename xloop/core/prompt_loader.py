"""Prompt template loader with variable substitution.

This module loads the markdown prompt templates for the implement, review
and finalize phases and renders them with task context.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .exceptions import XLoopError

_PLACEHOLDER = re.compile(r"\{([a-z_][a-z0-9_]*)\}")


class PromptLoadError(XLoopError):
    """Raised when prompt template cannot be loaded."""

    pass


class PromptRenderError(XLoopError):
    """Raised when prompt template cannot be rendered."""

    pass


class PromptTemplate(BaseModel):
    """Represents a loaded prompt template."""

    name: str = Field(description="Template name (e.g., 'implement', 'review')")
    content: str = Field(description="Raw template content")
    required_variables: List[str] = Field(
        default_factory=list, description="List of required variable names"
    )
    optional_variables: List[str] = Field(
        default_factory=list, description="List of optional variable names"
    )

    def render(self, variables: Dict[str, Any]) -> str:
        """Render the template with provided variables.

        Placeholders are only looked up in the template itself, so values
        containing braces (code in review feedback, for instance) pass
        through untouched.

        Raises:
            PromptRenderError: If required variables are missing
        """
        missing = set(self.required_variables) - set(variables.keys())
        if missing:
            raise PromptRenderError(
                f"Missing required variables for template '{self.name}': {sorted(missing)}"
            )

        all_vars = dict(variables)

        # {name_section} placeholders expand to a formatted block when
        # `name` has a value and disappear otherwise.
        for opt_var in self.optional_variables:
            if opt_var.endswith("_section"):
                data_var = opt_var[: -len("_section")]
                value = variables.get(data_var)
                all_vars[opt_var] = self._format_section(data_var, value) if value else ""
            else:
                all_vars.setdefault(opt_var, "")

        def replace_var(match):
            value = all_vars.get(match.group(1))
            return "" if value is None else str(value)

        return _PLACEHOLDER.sub(replace_var, self.content)

    def _format_section(self, section_name: str, value: Any) -> str:
        """Format optional sections based on their type."""
        if section_name == "context_files":
            if isinstance(value, (list, tuple)):
                value = " ".join(f"@{path}" for path in value)
            return f"\n# CONTEXT FILES\n\n{value}\n"

        if section_name == "acceptance_criteria":
            if isinstance(value, (list, tuple)):
                items = "\n".join(f"- [ ] {criterion}" for criterion in value)
            else:
                criteria = str(value).split("\n")
                items = "\n".join(f"- [ ] {c.strip()}" for c in criteria if c.strip())
            return f"\n## Acceptance Criteria\n\n{items}\n"

        if section_name == "lint_command":
            return f"- Run: {value}\n"

        # Default formatting
        return f"\n## {section_name.replace('_', ' ').title()}\n\n{value}\n"


class PromptLoader:
    """Loads and manages prompt templates."""

    def __init__(self, prompts_dir: Optional[Path] = None):
        """Initialize the prompt loader.

        Args:
            prompts_dir: Directory containing prompt templates.
                        Defaults to the prompts/ directory shipped with xloop.
        """
        if prompts_dir is None:
            prompts_dir = Path(__file__).parent.parent / "prompts"

        self.prompts_dir = Path(prompts_dir)
        if not self.prompts_dir.exists():
            raise PromptLoadError(f"Prompts directory not found: {self.prompts_dir}")

        self._templates: Dict[str, PromptTemplate] = {}

    def load_template(self, name: str) -> PromptTemplate:
        """Load a prompt template by name.

        Raises:
            PromptLoadError: If template file not found or unreadable
        """
        if name in self._templates:
            return self._templates[name]

        template_file = self.prompts_dir / f"{name}.md"
        if not template_file.exists():
            available = ", ".join(self.list_templates()) or "none"
            raise PromptLoadError(
                f"Template file not found: {template_file} (available: {available})"
            )

        try:
            content = template_file.read_text(encoding="utf-8")
        except OSError as e:
            raise PromptLoadError(f"Failed to read template '{name}': {e}") from e

        required_vars = []
        optional_vars = []
        for var in sorted(set(_PLACEHOLDER.findall(content))):
            if var.endswith("_section") or var in ("review_feedback", "task_description"):
                optional_vars.append(var)
            else:
                required_vars.append(var)

        template = PromptTemplate(
            name=name,
            content=content,
            required_variables=required_vars,
            optional_variables=optional_vars,
        )
        self._templates[name] = template
        return template

    def render_template(self, name: str, variables: Dict[str, Any]) -> str:
        """Load and render a template in one step."""
        template = self.load_template(name)
        return template.render(variables)

    def list_templates(self) -> List[str]:
        """List available template names (without .md extension)."""
        if not self.prompts_dir.exists():
            return []
        return sorted(f.stem for f in self.prompts_dir.glob("*.md") if f.is_file())


def load_prompt(name: str, prompts_dir: Optional[Path] = None, **variables) -> str:
    """Load and render a prompt template in one step.

    Example:
        >>> prompt = load_prompt(
        ...     "review",
        ...     feature="auth",
        ...     task_id="task-001",
        ...     task_title="Add login form",
        ... )
    """
    loader = PromptLoader(prompts_dir=prompts_dir)
    return loader.render_template(name, variables)
