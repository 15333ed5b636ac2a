"""Bundled templates.

Every prompt and scaffold file ralphctl ships lives in ``templates.yaml``
(next to this module) and is served by :class:`PromptCatalog`.
"""

from ralphctl.prompts.catalog import PromptCatalog

__all__ = ["PromptCatalog"]
