"""
Structural verification of parsed PE images.

The parser tolerates a lot: sections whose virtual ranges overlap (the first
one in the table wins), raw data cut short by EOF, directories that start in
a section's zero-filled tail, relocations that patch unmapped pages. The
Windows loader does not. ImageVerifier walks a PeImage and reports each such
problem against the section index or directory slot it concerns.

Every RVA verdict goes through the image's own RvaResolver, so verification
always agrees with how parse() resolved the same address.
"""

import logging
from pathlib import Path
from typing import Callable

from ..errors import ParseError, Unmapped
from ..options import ParseOptions
from ..verify import VerificationResult
from .headers import DataDirectory, SectionHeader
from .image import PeImage, parse
from .types import IMAGE_DIRECTORY_ENTRY_SECURITY

logger = logging.getLogger(__name__)

OPTIONAL_HEADER = "optional header"
ENTRY_POINT = "entry point"

# Smallest SectionAlignment for which FileAlignment may differ from it
PAGE_SIZE = 0x1000


def _section_label(section: SectionHeader) -> str:
    return f"section[{section.index}] {section.name_str}"


def _directory_label(directory: DataDirectory) -> str:
    return f"directory[{directory.index}] {directory.name}"


def _is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


def _align_up(value: int, alignment: int) -> int:
    return -(-value // alignment) * alignment


class ImageVerifier:
    """Loader-level consistency checks over a PeImage.

    Usage:
        result = ImageVerifier.verify(Path("foo.dll"))
        for finding in result.about("section[3]"):
            print(finding)
    """

    def __init__(self, image: PeImage):
        self._image = image

    @classmethod
    def verify(
        cls, path: Path, options: ParseOptions | None = None
    ) -> VerificationResult:
        """Parse and verify a PE file on disk.

        A file that fails to parse yields a failed result rather than an
        exception.
        """
        return cls.verify_data(path.read_bytes(), options)

    @classmethod
    def verify_data(
        cls, data: bytes | bytearray, options: ParseOptions | None = None
    ) -> VerificationResult:
        """Parse and verify PE data in memory."""
        try:
            image = parse(data, options)
        except ParseError as exc:
            result = VerificationResult()
            result.error("image", f"parse failed: {exc}")
            return result
        return cls(image).run_all_checks()

    def run_all_checks(self) -> VerificationResult:
        result = VerificationResult()

        checks: list[Callable[[], VerificationResult]] = [
            self.check_alignment_fields,
            self.check_header_region,
            self.check_sections,
            self.check_size_of_image,
            self.check_entry_point,
            self.check_data_directories,
            self.check_relocation_targets,
            self.check_recovered_errors,
        ]
        for check in checks:
            result.merge(check())

        logger.debug(
            "Verified image: %d error(s), %d warning(s)",
            len(result.errors),
            len(result.warnings),
        )
        return result

    # =========================================================================
    # Optional header
    # =========================================================================

    def check_alignment_fields(self) -> VerificationResult:
        """FileAlignment and SectionAlignment against the loader's rules.

        Both must be powers of two with SectionAlignment >= FileAlignment.
        Below the page size the two must be equal; otherwise FileAlignment
        is expected in [512, 64K].
        """
        result = VerificationResult()
        file_align = self._image.file_alignment
        sect_align = self._image.section_alignment

        if not _is_power_of_two(file_align):
            result.error(
                OPTIONAL_HEADER, f"FileAlignment 0x{file_align:x} is not a power of 2"
            )
        if not _is_power_of_two(sect_align):
            result.error(
                OPTIONAL_HEADER,
                f"SectionAlignment 0x{sect_align:x} is not a power of 2",
            )
        if not result.passed:
            return result

        if sect_align < file_align:
            result.error(
                OPTIONAL_HEADER,
                f"SectionAlignment 0x{sect_align:x} is smaller than "
                f"FileAlignment 0x{file_align:x}",
            )
        elif sect_align < PAGE_SIZE and file_align != sect_align:
            result.error(
                OPTIONAL_HEADER,
                f"SectionAlignment 0x{sect_align:x} is below the page size, so "
                f"FileAlignment must match it (is 0x{file_align:x})",
            )
        elif not 0x200 <= file_align <= 0x10000:
            result.warning(
                OPTIONAL_HEADER,
                f"FileAlignment 0x{file_align:x} is outside the usual "
                "range 0x200-0x10000",
            )
        return result

    def check_header_region(self) -> VerificationResult:
        """SizeOfHeaders must cover the section table and stay below every
        section's virtual range."""
        result = VerificationResult()
        image = self._image
        size_of_headers = image.optional_header.SizeOfHeaders.value

        table_end = (
            image.optional_header.offset
            + image.file_header.SizeOfOptionalHeader.value
            + SectionHeader.SIZE * len(image.sections)
        )
        if size_of_headers < table_end:
            result.error(
                OPTIONAL_HEADER,
                f"SizeOfHeaders 0x{size_of_headers:x} does not cover the "
                f"section table ending at 0x{table_end:x}",
            )

        file_align = image.file_alignment
        if _is_power_of_two(file_align) and size_of_headers % file_align:
            result.warning(
                OPTIONAL_HEADER,
                f"SizeOfHeaders 0x{size_of_headers:x} is not a multiple of "
                f"FileAlignment 0x{file_align:x}",
            )

        for section in image.sections:
            if section.VirtualAddress.value < size_of_headers:
                result.error(
                    _section_label(section),
                    f"VirtualAddress 0x{section.VirtualAddress.value:x} lies "
                    f"inside the headers (SizeOfHeaders 0x{size_of_headers:x})",
                )
        return result

    def check_size_of_image(self) -> VerificationResult:
        """SizeOfImage must reach the end of the last section's virtual range."""
        result = VerificationResult()
        size_of_image = self._image.optional_header.SizeOfImage.value
        sect_align = self._image.section_alignment

        end = max(
            (s.VirtualAddress.value + s.virtual_extent for s in self._image.sections),
            default=0,
        )
        if _is_power_of_two(sect_align):
            end = _align_up(end, sect_align)
            if size_of_image % sect_align:
                result.warning(
                    OPTIONAL_HEADER,
                    f"SizeOfImage 0x{size_of_image:x} is not a multiple of "
                    f"SectionAlignment 0x{sect_align:x}",
                )
        if size_of_image < end:
            result.error(
                OPTIONAL_HEADER,
                f"SizeOfImage 0x{size_of_image:x} ends before the last section "
                f"(needs 0x{end:x})",
            )
        return result

    # =========================================================================
    # Section table
    # =========================================================================

    def check_sections(self) -> VerificationResult:
        """Per-section placement.

        A section whose virtual range overlaps an earlier one is shadowed:
        RVAs in the overlap resolve to the earlier section, never to it.
        """
        result = VerificationResult()
        image = self._image
        file_align = image.file_alignment
        sect_align = image.section_alignment

        for section in image.sections:
            label = _section_label(section)
            va = section.VirtualAddress.value
            pointer = section.PointerToRawData.value
            raw_size = section.SizeOfRawData.value

            if _is_power_of_two(sect_align) and va % sect_align:
                result.error(
                    label,
                    f"VirtualAddress 0x{va:x} is not aligned to SectionAlignment "
                    f"0x{sect_align:x}",
                )

            if raw_size:
                if _is_power_of_two(file_align) and pointer % file_align:
                    result.warning(
                        label,
                        f"PointerToRawData 0x{pointer:x} is not aligned to "
                        f"FileAlignment 0x{file_align:x}",
                    )
                if pointer + raw_size > image.size:
                    result.error(
                        label,
                        f"raw data [0x{pointer:x}, 0x{pointer + raw_size:x}) runs "
                        f"past the end of the file (0x{image.size:x})",
                    )

            if section.virtual_extent == 0:
                continue
            for earlier in image.sections[: section.index]:
                if earlier.virtual_extent and (
                    earlier.contains_rva(va)
                    or section.contains_rva(earlier.VirtualAddress.value)
                ):
                    result.error(
                        label,
                        f"virtual range overlaps {_section_label(earlier)}, "
                        "which wins when resolving the shared RVAs",
                    )
                    break
        return result

    # =========================================================================
    # RVAs
    # =========================================================================

    def check_entry_point(self) -> VerificationResult:
        """AddressOfEntryPoint must land in file-backed executable code.

        DLLs may omit it (zero); executables may not.
        """
        result = VerificationResult()
        rva = self._image.entry_point
        if rva == 0:
            if not self._image.is_dll:
                result.error(ENTRY_POINT, "executable image has no entry point")
            return result

        try:
            location = self._image.resolver.locate(rva)
        except Unmapped:
            result.error(ENTRY_POINT, f"RVA 0x{rva:x} is not mapped")
            return result

        if location.section is None:
            result.warning(ENTRY_POINT, f"RVA 0x{rva:x} lies in header space")
        elif location.in_padding:
            result.error(
                ENTRY_POINT,
                f"RVA 0x{rva:x} lies in the uninitialized tail of "
                f"{_section_label(location.section)}",
            )
        elif not location.section.is_executable:
            result.warning(
                ENTRY_POINT,
                f"RVA 0x{rva:x} is in {_section_label(location.section)}, "
                "which is not executable",
            )
        return result

    def check_data_directories(self) -> VerificationResult:
        """Each present directory must start at file-backed data.

        A directory running past its section's raw data is only a warning:
        the parser reads what is there and records what is not. SECURITY
        holds a file offset, so it is checked against the file size.
        """
        result = VerificationResult()
        image = self._image

        for directory in image.present_data_directories():
            label = _directory_label(directory)
            start = directory.VirtualAddress.value
            size = directory.Size.value

            if directory.index == IMAGE_DIRECTORY_ENTRY_SECURITY:
                if start + size > image.size:
                    result.error(
                        label,
                        f"certificate table [0x{start:x}, 0x{start + size:x}) runs "
                        f"past the end of the file (0x{image.size:x})",
                    )
                continue

            try:
                location = image.resolver.locate(start)
            except Unmapped:
                result.error(label, f"RVA 0x{start:x} is not mapped")
                continue

            if location.in_padding:
                result.error(
                    label,
                    f"RVA 0x{start:x} starts in the uninitialized tail of "
                    f"{_section_label(location.section)}",
                )
            elif location.available is None:
                if location.offset + size > image.size:
                    result.error(
                        label,
                        f"header-space range [0x{start:x}, 0x{start + size:x}) "
                        f"runs past the end of the file (0x{image.size:x})",
                    )
            elif size > location.available:
                result.warning(
                    label,
                    f"Size 0x{size:x} runs 0x{size - location.available:x} bytes "
                    f"past the raw data of {_section_label(location.section)}",
                )
        return result

    def check_relocation_targets(self) -> VerificationResult:
        """Every fixup must patch file-backed image data."""
        result = VerificationResult()
        if self._image.relocations is None:
            return result

        resolver = self._image.resolver
        for i, block in enumerate(self._image.relocations):
            label = f"relocations[{i}]"
            page = block.PageRVA.value
            if page % PAGE_SIZE:
                result.warning(label, f"PageRVA 0x{page:x} is not page aligned")

            for target in block.target_rvas():
                try:
                    location = resolver.locate(target)
                except Unmapped:
                    result.error(label, f"target RVA 0x{target:x} is not mapped")
                    continue
                if location.in_padding:
                    result.warning(
                        label,
                        f"target RVA 0x{target:x} lies in the uninitialized tail "
                        f"of {_section_label(location.section)}",
                    )
        return result

    def check_recovered_errors(self) -> VerificationResult:
        """Failures the parser recorded instead of raising."""
        result = VerificationResult()
        for where, exc in self._image.iter_errors():
            result.warning(where, str(exc))
        return result
