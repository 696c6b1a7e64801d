"""
Parser configuration.

ParseOptions bundles the sanity limits that protect the parser from hostile
counts and the policy switches that are not fixed by the PE format itself.
"""

from dataclasses import dataclass, replace

# Directory names accepted by ParseOptions.excluding()
DIRECTORY_SWITCHES = {
    "imports": "parse_imports",
    "exports": "parse_exports",
    "relocs": "parse_relocations",
    "relocations": "parse_relocations",
    "resources": "parse_resources",
}


@dataclass(frozen=True)
class ParseOptions:
    """Limits and policies applied during a parse.

    Attributes:
        max_sections: Upper bound for FileHeader.NumberOfSections
        max_data_directories: Upper bound for NumberOfRvaAndSizes
        max_import_descriptors: Descriptors walked before giving up
        max_import_functions: Thunks walked per descriptor
        max_export_functions: Address table entries walked
        max_resource_depth: Nesting limit for the resource tree
        max_resource_entries: Total entries across the resource tree
        max_string_length: Longest NUL-terminated string accepted
        header_space_fallback: Map RVAs below the first section directly
            to file offsets in the header region
    """

    max_sections: int = 256
    max_data_directories: int = 64
    max_import_descriptors: int = 4096
    max_import_functions: int = 8192
    max_export_functions: int = 65536
    max_resource_depth: int = 32
    max_resource_entries: int = 32768
    max_string_length: int = 512
    header_space_fallback: bool = True
    parse_imports: bool = True
    parse_exports: bool = True
    parse_relocations: bool = True
    parse_resources: bool = True

    def excluding(self, *names: str) -> "ParseOptions":
        """Return a copy with the named directories switched off.

        Args:
            names: Any of "imports", "exports", "relocs", "resources"

        Raises:
            ValueError: If a name is not a known directory
        """
        changes = {}
        for name in names:
            try:
                changes[DIRECTORY_SWITCHES[name]] = False
            except KeyError:
                raise ValueError(f"Unknown directory to exclude: {name!r}") from None
        return replace(self, **changes)


DEFAULT_OPTIONS = ParseOptions()
