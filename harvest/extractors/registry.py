"""Registry mapping source names to extraction modules.

Usage:
    registry = ExtractorRegistry()
    registry.register(DodaExtractor())
    modules, missing = registry.resolve(["doda", "unknown"])
"""

import importlib
import logging

from harvest.extractors.base import ExtractionModule

logger = logging.getLogger(__name__)


class ExtractorRegistry:
    """Source name → extraction module. Resolved once per engine run."""

    def __init__(self, modules: list[ExtractionModule] | None = None) -> None:
        self._modules: dict[str, ExtractionModule] = {}
        for module in modules or []:
            self.register(module)

    def register(self, module: ExtractionModule) -> None:
        if module.source in self._modules:
            msg = f"Extraction module '{module.source}' is already registered"
            raise ValueError(msg)
        self._modules[module.source] = module

    def get(self, source: str) -> ExtractionModule | None:
        return self._modules.get(source)

    def resolve(self, sources: list[str]) -> tuple[list[ExtractionModule], list[str]]:
        """Return (modules, missing) preserving request order, ignoring repeats."""
        modules: list[ExtractionModule] = []
        missing: list[str] = []
        seen: set[str] = set()
        for name in sources:
            if name in seen:
                continue
            seen.add(name)
            module = self._modules.get(name)
            if module is None:
                missing.append(name)
            else:
                modules.append(module)
        return modules, missing

    def available(self) -> list[str]:
        """Return sorted list of registered source names."""
        return sorted(self._modules)


def load_extractor(target: str) -> ExtractionModule:
    """Instantiate an extraction module from a ``module.path:ClassName`` string.

    Raises:
        ValueError: If the target cannot be imported or is not a module class.
    """
    module_path, _, class_name = target.partition(":")
    try:
        module = importlib.import_module(module_path)
        cls = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        msg = f"Cannot load extractor '{target}': {e}"
        raise ValueError(msg) from e

    instance = cls()
    if not isinstance(instance, ExtractionModule):
        msg = f"'{target}' is not an ExtractionModule"
        raise ValueError(msg)
    return instance


def build_registry(targets: dict[str, str]) -> ExtractorRegistry:
    """Build a registry from configured ``name -> module.path:ClassName`` entries."""
    registry = ExtractorRegistry()
    for name, target in targets.items():
        module = load_extractor(target)
        if module.source != name:
            logger.warning(
                "Extractor configured as '%s' reports source '%s' — using '%s'",
                name, module.source, module.source,
            )
        registry.register(module)
    return registry
