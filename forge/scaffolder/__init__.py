"""blueprint-forge scaffolder: renders, assembles and packages projects.

Quick usage::

    from forge.blueprints import BlueprintLoader
    from forge.scaffolder import ProjectGenerator

    generator = ProjectGenerator(BlueprintLoader(["./blueprints"]))
    result = generator.generate("cli-simple", {"ProjectName": "demo"})
    blob = generator.package(result)
"""

from forge.scaffolder.archive import pack_archive, unpack_archive
from forge.scaffolder.assembler import AssemblyMode, ProjectAssembler
from forge.scaffolder.dependencies import merge_dependencies
from forge.scaffolder.generator import GenerationResult, ProjectGenerator
from forge.scaffolder.templates import FileRenderFailure, RenderedFile, TemplateRenderer

__all__ = [
    "AssemblyMode",
    "FileRenderFailure",
    "GenerationResult",
    "ProjectAssembler",
    "ProjectGenerator",
    "RenderedFile",
    "TemplateRenderer",
    "merge_dependencies",
    "pack_archive",
    "unpack_archive",
]
