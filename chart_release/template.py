"""Rendering of release notes and redirect pages with Jinja2.

Templates are looked up relative to the repository root first, so a path in
the configuration (e.g. `repository.release.template`) overrides the built-in
default of the same purpose.
"""

from collections.abc import Mapping
import logging
from pathlib import Path
from typing import Any

from jinja2 import (
    ChoiceLoader,
    DictLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    select_autoescape,
)

from .exceptions import TemplateException

__all__ = [
    "TemplateRenderer",
    "RELEASE_TEMPLATE",
    "REDIRECT_TEMPLATE",
]

_LOGGER = logging.getLogger(__name__)

RELEASE_TEMPLATE = "release.md.j2"
REDIRECT_TEMPLATE = "redirect.html.j2"

_DEFAULT_TEMPLATES = {
    RELEASE_TEMPLATE: """\
{% if icon %}<img src="{{ repo_raw_url }}/{{ branch }}/{{ type_path }}/{{ name }}/{{ icon }}" alt="{{ name }}" width="64" height="64">

{% endif %}{{ description }}

### Chart Details

- **Version:** `{{ version }}`
{% if app_version %}- **App Version:** `{{ app_version }}`
{% endif %}{% if kube_version %}- **Kubernetes Version:** `{{ kube_version }}`
{% endif %}- **Source:** [{{ type_path }}/{{ name }}]({{ repo_url }}/tree/{{ tag }}/{{ type_path }}/{{ name }})
{% if dependencies %}
### Dependencies

{% for dependency in dependencies %}- [{{ dependency.name }}]({{ dependency.link }}) `{{ dependency.version }}`
{% endfor %}{% endif %}{% if issues %}
### Resolved Issues

{% for issue in issues %}- [#{{ issue.number }}]({{ issue.url }}) {{ issue.title }}
{% endfor %}{% endif %}""",
    REDIRECT_TEMPLATE: """\
<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <title>{{ name }}</title>
    <link rel="canonical" href="{{ url }}">
    <meta http-equiv="refresh" content="0; url={{ url }}">
  </head>
  <body>
    <p>The {{ name }} {{ type }} chart has moved to <a href="{{ url }}">{{ url }}</a>.</p>
  </body>
</html>
""",
}


class TemplateRenderer:
    """Renders named templates with a mapping of values."""

    def __init__(self, search_path: Path | None = None) -> None:
        """Initialize TemplateRenderer."""
        loaders = []
        if search_path is not None:
            loaders.append(FileSystemLoader(str(search_path)))
        loaders.append(DictLoader(_DEFAULT_TEMPLATES))
        self._env = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=select_autoescape(["html", "html.j2"]),
        )

    def render(
        self, template: str | None, default: str, context: Mapping[str, Any]
    ) -> str:
        """Render `template`, or the built-in `default` when it is not set."""
        name = template or default
        try:
            result = self._env.get_template(name).render(**context)
        except TemplateError as err:
            raise TemplateException(f"Unable to render template {name}: {err}") from err
        _LOGGER.debug("Rendered template %s (%d bytes)", name, len(result))
        return result
