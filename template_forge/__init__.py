"""Template Forge -- materialize projects from templates.

Quick usage::

    from template_forge import PipelineOptions, TemplateContext, materialize

    report = await materialize(
        "my-org/my-template#v2",
        PipelineOptions(output_dir=Path("packages/widget"), context=TemplateContext(project_name="widget")),
    )
"""

from template_forge.config import Config
from template_forge.exceptions import FetchError, RenderError, TemplateForgeError
from template_forge.models import PipelineResult, TemplateContext, TemplateSource
from template_forge.pipeline import (
    MaterializeReport,
    PipelineDependencies,
    PipelineOptions,
    TemplatePipeline,
    build_default_dependencies,
    create_default_pipeline,
    materialize,
    print_report,
)

__all__ = [
    "Config",
    "FetchError",
    "MaterializeReport",
    "PipelineDependencies",
    "PipelineOptions",
    "PipelineResult",
    "RenderError",
    "TemplateContext",
    "TemplateForgeError",
    "TemplatePipeline",
    "TemplateSource",
    "build_default_dependencies",
    "create_default_pipeline",
    "materialize",
    "print_report",
]
