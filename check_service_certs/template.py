"""
Alert text templating for check-service-certs.
"""

from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template, TemplateError


class TemplateRenderError(Exception):
    """The alert template could not be loaded or rendered."""


class AlertTemplate:
    """
    Renders expiring-certificate alert text.

    The template sees three names: ServiceName, CertPath and NumDays.
    """

    def __init__(self, path: Optional[str] = None, source: Optional[str] = None):
        self.path = path
        self._source = source
        self._template: Optional[Template] = None

    @classmethod
    def from_string(cls, source: str) -> "AlertTemplate":
        return cls(source=source)

    def _load(self) -> Template:
        if self._template is not None:
            return self._template

        if self._source is not None:
            env = Environment(undefined=StrictUndefined, keep_trailing_newline=True)
            try:
                self._template = env.from_string(self._source)
            except TemplateError as e:
                raise TemplateRenderError(f"Invalid expiring certificate template: {e}") from e
            return self._template

        if not self.path:
            raise TemplateRenderError("No alert template configured (global.template)")

        template_path = Path(self.path)
        env = Environment(
            loader=FileSystemLoader(str(template_path.parent)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        try:
            self._template = env.get_template(template_path.name)
        except (OSError, TemplateError) as e:
            raise TemplateRenderError(
                f"Could not read expiring certificate template file {self.path}: {e}"
            ) from e
        return self._template

    def render(self, service_name: str, cert_path: str, num_days: int) -> str:
        """
        Render the alert text.

        Raises:
            TemplateRenderError: If the template cannot be loaded or rendered
        """
        template = self._load()
        try:
            return template.render(ServiceName=service_name, CertPath=cert_path, NumDays=num_days)
        except TemplateError as e:
            raise TemplateRenderError(
                f"Failed to execute expiring certificate template: {e}"
            ) from e
