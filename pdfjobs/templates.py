from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import MissingParameters, UnknownTemplate


@dataclass(frozen=True)
class TemplateSpec:
    name: str
    script: str
    params: Tuple[str, ...]


TEMPLATES: Dict[str, TemplateSpec] = {
    "crm-trade-invoice": TemplateSpec("crm-trade-invoice", "crm-trade-invoice.py", ("tradeid",)),
    "product-de": TemplateSpec("product-de", "product-de.py", ("isin", "date")),
}


class TemplateRegistry:
    def __init__(self, templates: Optional[Mapping[str, TemplateSpec]] = None):
        self.templates = dict(TEMPLATES if templates is None else templates)

    def get(self, name: str) -> TemplateSpec:
        spec = self.templates.get(name)
        if spec is None:
            raise UnknownTemplate(name)
        return spec

    def require(self, name: str, params: Mapping[str, str]) -> TemplateSpec:
        """Look up a template and check every declared parameter is present.

        Raises UnknownTemplate, or MissingParameters naming all absent
        parameters in declared order.
        """
        spec = self.get(name)
        missing: List[str] = [p for p in spec.params if not params.get(p)]
        if missing:
            raise MissingParameters(missing)
        return spec


registry = TemplateRegistry()


def get_registry() -> TemplateRegistry:
    return registry
