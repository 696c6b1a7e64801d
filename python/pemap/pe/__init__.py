"""
PE parsing package for pemap.

- types: PE constants and symbolic name tables
- headers: Field-wrapped header structures and header parsing stages
- rva: RVA resolution through the section table
- imports / exports / relocs / resources: directory parsers
- image: PeImage and the parse() pipeline
- verify: Structural verification of parsed images
"""

from .image import PeImage, parse, parse_file
from .rva import ResolvedRva, RvaReader, RvaResolver
from .headers import (
    DataDirectory,
    DosHeader,
    FieldStruct,
    FileHeader,
    OptionalHeader,
    OptionalHeader32,
    OptionalHeader64,
    SectionHeader,
)
from .imports import ImportDescriptor, ImportDirectory, ImportedFunction
from .exports import ExportDirectory, ExportedFunction
from .relocs import Relocation, RelocationBlock, RelocationDirectory
from .resources import (
    ResourceDataEntry,
    ResourceDirectory,
    ResourceEntry,
    resource_type_name,
)
from .verify import ImageVerifier
from .types import (
    # Machine types
    IMAGE_FILE_MACHINE_AMD64,
    IMAGE_FILE_MACHINE_ARM64,
    IMAGE_FILE_MACHINE_I386,
    # Optional header magic
    IMAGE_NT_OPTIONAL_HDR32_MAGIC,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC,
    # Data directory indices
    IMAGE_DIRECTORY_ENTRY_BASERELOC,
    IMAGE_DIRECTORY_ENTRY_EXPORT,
    IMAGE_DIRECTORY_ENTRY_IMPORT,
    IMAGE_DIRECTORY_ENTRY_RESOURCE,
    # Helper functions
    flag_names,
    lookup_name,
    section_flag_names,
)

__all__ = [
    # Pipeline
    "PeImage",
    "parse",
    "parse_file",
    # Resolution
    "ResolvedRva",
    "RvaReader",
    "RvaResolver",
    # Headers
    "DataDirectory",
    "DosHeader",
    "FieldStruct",
    "FileHeader",
    "OptionalHeader",
    "OptionalHeader32",
    "OptionalHeader64",
    "SectionHeader",
    # Directories
    "ImportDescriptor",
    "ImportDirectory",
    "ImportedFunction",
    "ExportDirectory",
    "ExportedFunction",
    "Relocation",
    "RelocationBlock",
    "RelocationDirectory",
    "ResourceDataEntry",
    "ResourceDirectory",
    "ResourceEntry",
    "resource_type_name",
    # Verification
    "ImageVerifier",
    # Constants
    "IMAGE_FILE_MACHINE_AMD64",
    "IMAGE_FILE_MACHINE_ARM64",
    "IMAGE_FILE_MACHINE_I386",
    "IMAGE_NT_OPTIONAL_HDR32_MAGIC",
    "IMAGE_NT_OPTIONAL_HDR64_MAGIC",
    "IMAGE_DIRECTORY_ENTRY_BASERELOC",
    "IMAGE_DIRECTORY_ENTRY_EXPORT",
    "IMAGE_DIRECTORY_ENTRY_IMPORT",
    "IMAGE_DIRECTORY_ENTRY_RESOURCE",
    # Helper functions
    "flag_names",
    "lookup_name",
    "section_flag_names",
]
