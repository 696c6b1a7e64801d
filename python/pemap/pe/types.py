"""
PE/COFF constants and symbolic name tables.

Covers both PE32 and PE32+ images. Numeric constants follow the names used
in winnt.h; the *_NAMES tables map values to the short symbolic names used
when projecting an image for display or serialization.

References:
- Microsoft PE/COFF Specification
- https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
"""

# =============================================================================
# Signatures and magic values
# =============================================================================

# DOS Header
DOS_MAGIC = 0x5A4D  # "MZ" in little-endian

# PE Signature
PE_SIGNATURE = b"PE\x00\x00"
PE_SIGNATURE_OFFSET_LOCATION = 0x3C  # Offset in DOS header where e_lfanew lives

# Optional header magic
IMAGE_ROM_OPTIONAL_HDR_MAGIC = 0x107
IMAGE_NT_OPTIONAL_HDR32_MAGIC = 0x10B
IMAGE_NT_OPTIONAL_HDR64_MAGIC = 0x20B  # PE32+

# =============================================================================
# Machine types
# =============================================================================

IMAGE_FILE_MACHINE_UNKNOWN = 0x0
IMAGE_FILE_MACHINE_I386 = 0x14C
IMAGE_FILE_MACHINE_ARM = 0x1C0
IMAGE_FILE_MACHINE_THUMB = 0x1C2
IMAGE_FILE_MACHINE_ARMNT = 0x1C4
IMAGE_FILE_MACHINE_IA64 = 0x200
IMAGE_FILE_MACHINE_RISCV64 = 0x5064
IMAGE_FILE_MACHINE_AMD64 = 0x8664
IMAGE_FILE_MACHINE_ARM64 = 0xAA64

# =============================================================================
# Characteristics flags
# =============================================================================

# File characteristics
IMAGE_FILE_RELOCS_STRIPPED = 0x0001
IMAGE_FILE_EXECUTABLE_IMAGE = 0x0002
IMAGE_FILE_LINE_NUMS_STRIPPED = 0x0004
IMAGE_FILE_LOCAL_SYMS_STRIPPED = 0x0008
IMAGE_FILE_AGGRESSIVE_WS_TRIM = 0x0010
IMAGE_FILE_LARGE_ADDRESS_AWARE = 0x0020
IMAGE_FILE_BYTES_REVERSED_LO = 0x0080
IMAGE_FILE_32BIT_MACHINE = 0x0100
IMAGE_FILE_DEBUG_STRIPPED = 0x0200
IMAGE_FILE_REMOVABLE_RUN_FROM_SWAP = 0x0400
IMAGE_FILE_NET_RUN_FROM_SWAP = 0x0800
IMAGE_FILE_SYSTEM = 0x1000
IMAGE_FILE_DLL = 0x2000
IMAGE_FILE_UP_SYSTEM_ONLY = 0x4000
IMAGE_FILE_BYTES_REVERSED_HI = 0x8000

# DLL characteristics
IMAGE_DLLCHARACTERISTICS_HIGH_ENTROPY_VA = 0x0020
IMAGE_DLLCHARACTERISTICS_DYNAMIC_BASE = 0x0040  # ASLR
IMAGE_DLLCHARACTERISTICS_FORCE_INTEGRITY = 0x0080
IMAGE_DLLCHARACTERISTICS_NX_COMPAT = 0x0100
IMAGE_DLLCHARACTERISTICS_NO_ISOLATION = 0x0200
IMAGE_DLLCHARACTERISTICS_NO_SEH = 0x0400
IMAGE_DLLCHARACTERISTICS_NO_BIND = 0x0800
IMAGE_DLLCHARACTERISTICS_APPCONTAINER = 0x1000
IMAGE_DLLCHARACTERISTICS_WDM_DRIVER = 0x2000
IMAGE_DLLCHARACTERISTICS_GUARD_CF = 0x4000
IMAGE_DLLCHARACTERISTICS_TERMINAL_SERVER_AWARE = 0x8000

# Section characteristics (alignment nibble is not a flag and is omitted)
IMAGE_SCN_TYPE_NO_PAD = 0x00000008
IMAGE_SCN_CNT_CODE = 0x00000020
IMAGE_SCN_CNT_INITIALIZED_DATA = 0x00000040
IMAGE_SCN_CNT_UNINITIALIZED_DATA = 0x00000080
IMAGE_SCN_LNK_INFO = 0x00000200
IMAGE_SCN_LNK_REMOVE = 0x00000800
IMAGE_SCN_LNK_COMDAT = 0x00001000
IMAGE_SCN_GPREL = 0x00008000
IMAGE_SCN_LNK_NRELOC_OVFL = 0x01000000
IMAGE_SCN_MEM_DISCARDABLE = 0x02000000
IMAGE_SCN_MEM_NOT_CACHED = 0x04000000
IMAGE_SCN_MEM_NOT_PAGED = 0x08000000
IMAGE_SCN_MEM_SHARED = 0x10000000
IMAGE_SCN_MEM_EXECUTE = 0x20000000
IMAGE_SCN_MEM_READ = 0x40000000
IMAGE_SCN_MEM_WRITE = 0x80000000
IMAGE_SCN_ALIGN_MASK = 0x00F00000

# =============================================================================
# Subsystems
# =============================================================================

IMAGE_SUBSYSTEM_UNKNOWN = 0
IMAGE_SUBSYSTEM_NATIVE = 1
IMAGE_SUBSYSTEM_WINDOWS_GUI = 2
IMAGE_SUBSYSTEM_WINDOWS_CUI = 3
IMAGE_SUBSYSTEM_OS2_CUI = 5
IMAGE_SUBSYSTEM_POSIX_CUI = 7
IMAGE_SUBSYSTEM_NATIVE_WINDOWS = 8
IMAGE_SUBSYSTEM_WINDOWS_CE_GUI = 9
IMAGE_SUBSYSTEM_EFI_APPLICATION = 10
IMAGE_SUBSYSTEM_EFI_BOOT_SERVICE_DRIVER = 11
IMAGE_SUBSYSTEM_EFI_RUNTIME_DRIVER = 12
IMAGE_SUBSYSTEM_EFI_ROM = 13
IMAGE_SUBSYSTEM_XBOX = 14
IMAGE_SUBSYSTEM_WINDOWS_BOOT_APPLICATION = 16

# =============================================================================
# Data directories
# =============================================================================

IMAGE_DIRECTORY_ENTRY_EXPORT = 0
IMAGE_DIRECTORY_ENTRY_IMPORT = 1
IMAGE_DIRECTORY_ENTRY_RESOURCE = 2
IMAGE_DIRECTORY_ENTRY_EXCEPTION = 3
IMAGE_DIRECTORY_ENTRY_SECURITY = 4
IMAGE_DIRECTORY_ENTRY_BASERELOC = 5
IMAGE_DIRECTORY_ENTRY_DEBUG = 6
IMAGE_DIRECTORY_ENTRY_ARCHITECTURE = 7
IMAGE_DIRECTORY_ENTRY_GLOBALPTR = 8
IMAGE_DIRECTORY_ENTRY_TLS = 9
IMAGE_DIRECTORY_ENTRY_LOAD_CONFIG = 10
IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT = 11
IMAGE_DIRECTORY_ENTRY_IAT = 12
IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT = 13
IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR = 14
IMAGE_NUMBEROF_DIRECTORY_ENTRIES = 16

# =============================================================================
# Base relocation types
# =============================================================================

IMAGE_REL_BASED_ABSOLUTE = 0  # Padding, skip
IMAGE_REL_BASED_HIGH = 1
IMAGE_REL_BASED_LOW = 2
IMAGE_REL_BASED_HIGHLOW = 3  # 32-bit pointer
IMAGE_REL_BASED_HIGHADJ = 4
IMAGE_REL_BASED_ARM_MOV32 = 5
IMAGE_REL_BASED_RESERVED = 6
IMAGE_REL_BASED_THUMB_MOV32 = 7
IMAGE_REL_BASED_RISCV_LOW12I = 8
IMAGE_REL_BASED_MIPS_JMPADDR16 = 9
IMAGE_REL_BASED_DIR64 = 10  # 64-bit pointer

# =============================================================================
# Import / export / resource encoding
# =============================================================================

IMAGE_ORDINAL_FLAG32 = 0x80000000
IMAGE_ORDINAL_FLAG64 = 0x8000000000000000
IMAGE_HINT_NAME_RVA_MASK = 0x7FFFFFFF

IMAGE_RESOURCE_NAME_IS_STRING = 0x80000000
IMAGE_RESOURCE_DATA_IS_DIRECTORY = 0x80000000
IMAGE_RESOURCE_OFFSET_MASK = 0x7FFFFFFF

# Resource types (first level of the resource tree)
RT_CURSOR = 1
RT_BITMAP = 2
RT_ICON = 3
RT_MENU = 4
RT_DIALOG = 5
RT_STRING = 6
RT_FONTDIR = 7
RT_FONT = 8
RT_ACCELERATOR = 9
RT_RCDATA = 10
RT_MESSAGETABLE = 11
RT_GROUP_CURSOR = 12
RT_GROUP_ICON = 14
RT_VERSION = 16
RT_DLGINCLUDE = 17
RT_PLUGPLAY = 19
RT_VXD = 20
RT_ANICURSOR = 21
RT_ANIICON = 22
RT_HTML = 23
RT_MANIFEST = 24

# =============================================================================
# Structure sizes
# =============================================================================

DOS_HEADER_SIZE = 64
FILE_HEADER_SIZE = 20
OPTIONAL_HEADER32_SIZE = 96  # Fixed part, before data directories
OPTIONAL_HEADER64_SIZE = 112  # Fixed part, before data directories
DATA_DIRECTORY_SIZE = 8
SECTION_HEADER_SIZE = 40
IMPORT_DESCRIPTOR_SIZE = 20
EXPORT_DIRECTORY_SIZE = 40
BASE_RELOCATION_BLOCK_SIZE = 8
RESOURCE_DIRECTORY_SIZE = 16
RESOURCE_DIRECTORY_ENTRY_SIZE = 8
RESOURCE_DATA_ENTRY_SIZE = 16

# =============================================================================
# Symbolic name tables
# =============================================================================

MACHINE_NAMES = {
    IMAGE_FILE_MACHINE_UNKNOWN: "UNKNOWN",
    IMAGE_FILE_MACHINE_I386: "I386",
    IMAGE_FILE_MACHINE_ARM: "ARM",
    IMAGE_FILE_MACHINE_THUMB: "THUMB",
    IMAGE_FILE_MACHINE_ARMNT: "ARMNT",
    IMAGE_FILE_MACHINE_IA64: "IA64",
    IMAGE_FILE_MACHINE_RISCV64: "RISCV64",
    IMAGE_FILE_MACHINE_AMD64: "AMD64",
    IMAGE_FILE_MACHINE_ARM64: "ARM64",
}

OPTIONAL_MAGIC_NAMES = {
    IMAGE_ROM_OPTIONAL_HDR_MAGIC: "ROM",
    IMAGE_NT_OPTIONAL_HDR32_MAGIC: "PE32",
    IMAGE_NT_OPTIONAL_HDR64_MAGIC: "PE32+",
}

SUBSYSTEM_NAMES = {
    IMAGE_SUBSYSTEM_UNKNOWN: "UNKNOWN",
    IMAGE_SUBSYSTEM_NATIVE: "NATIVE",
    IMAGE_SUBSYSTEM_WINDOWS_GUI: "WINDOWS_GUI",
    IMAGE_SUBSYSTEM_WINDOWS_CUI: "WINDOWS_CUI",
    IMAGE_SUBSYSTEM_OS2_CUI: "OS2_CUI",
    IMAGE_SUBSYSTEM_POSIX_CUI: "POSIX_CUI",
    IMAGE_SUBSYSTEM_NATIVE_WINDOWS: "NATIVE_WINDOWS",
    IMAGE_SUBSYSTEM_WINDOWS_CE_GUI: "WINDOWS_CE_GUI",
    IMAGE_SUBSYSTEM_EFI_APPLICATION: "EFI_APPLICATION",
    IMAGE_SUBSYSTEM_EFI_BOOT_SERVICE_DRIVER: "EFI_BOOT_SERVICE_DRIVER",
    IMAGE_SUBSYSTEM_EFI_RUNTIME_DRIVER: "EFI_RUNTIME_DRIVER",
    IMAGE_SUBSYSTEM_EFI_ROM: "EFI_ROM",
    IMAGE_SUBSYSTEM_XBOX: "XBOX",
    IMAGE_SUBSYSTEM_WINDOWS_BOOT_APPLICATION: "WINDOWS_BOOT_APPLICATION",
}

FILE_CHARACTERISTICS_NAMES = {
    IMAGE_FILE_RELOCS_STRIPPED: "RELOCS_STRIPPED",
    IMAGE_FILE_EXECUTABLE_IMAGE: "EXECUTABLE_IMAGE",
    IMAGE_FILE_LINE_NUMS_STRIPPED: "LINE_NUMS_STRIPPED",
    IMAGE_FILE_LOCAL_SYMS_STRIPPED: "LOCAL_SYMS_STRIPPED",
    IMAGE_FILE_AGGRESSIVE_WS_TRIM: "AGGRESSIVE_WS_TRIM",
    IMAGE_FILE_LARGE_ADDRESS_AWARE: "LARGE_ADDRESS_AWARE",
    IMAGE_FILE_BYTES_REVERSED_LO: "BYTES_REVERSED_LO",
    IMAGE_FILE_32BIT_MACHINE: "32BIT_MACHINE",
    IMAGE_FILE_DEBUG_STRIPPED: "DEBUG_STRIPPED",
    IMAGE_FILE_REMOVABLE_RUN_FROM_SWAP: "REMOVABLE_RUN_FROM_SWAP",
    IMAGE_FILE_NET_RUN_FROM_SWAP: "NET_RUN_FROM_SWAP",
    IMAGE_FILE_SYSTEM: "SYSTEM",
    IMAGE_FILE_DLL: "DLL",
    IMAGE_FILE_UP_SYSTEM_ONLY: "UP_SYSTEM_ONLY",
    IMAGE_FILE_BYTES_REVERSED_HI: "BYTES_REVERSED_HI",
}

DLL_CHARACTERISTICS_NAMES = {
    IMAGE_DLLCHARACTERISTICS_HIGH_ENTROPY_VA: "HIGH_ENTROPY_VA",
    IMAGE_DLLCHARACTERISTICS_DYNAMIC_BASE: "DYNAMIC_BASE",
    IMAGE_DLLCHARACTERISTICS_FORCE_INTEGRITY: "FORCE_INTEGRITY",
    IMAGE_DLLCHARACTERISTICS_NX_COMPAT: "NX_COMPAT",
    IMAGE_DLLCHARACTERISTICS_NO_ISOLATION: "NO_ISOLATION",
    IMAGE_DLLCHARACTERISTICS_NO_SEH: "NO_SEH",
    IMAGE_DLLCHARACTERISTICS_NO_BIND: "NO_BIND",
    IMAGE_DLLCHARACTERISTICS_APPCONTAINER: "APPCONTAINER",
    IMAGE_DLLCHARACTERISTICS_WDM_DRIVER: "WDM_DRIVER",
    IMAGE_DLLCHARACTERISTICS_GUARD_CF: "GUARD_CF",
    IMAGE_DLLCHARACTERISTICS_TERMINAL_SERVER_AWARE: "TERMINAL_SERVER_AWARE",
}

SECTION_CHARACTERISTICS_NAMES = {
    IMAGE_SCN_TYPE_NO_PAD: "TYPE_NO_PAD",
    IMAGE_SCN_CNT_CODE: "CNT_CODE",
    IMAGE_SCN_CNT_INITIALIZED_DATA: "CNT_INITIALIZED_DATA",
    IMAGE_SCN_CNT_UNINITIALIZED_DATA: "CNT_UNINITIALIZED_DATA",
    IMAGE_SCN_LNK_INFO: "LNK_INFO",
    IMAGE_SCN_LNK_REMOVE: "LNK_REMOVE",
    IMAGE_SCN_LNK_COMDAT: "LNK_COMDAT",
    IMAGE_SCN_GPREL: "GPREL",
    IMAGE_SCN_LNK_NRELOC_OVFL: "LNK_NRELOC_OVFL",
    IMAGE_SCN_MEM_DISCARDABLE: "MEM_DISCARDABLE",
    IMAGE_SCN_MEM_NOT_CACHED: "MEM_NOT_CACHED",
    IMAGE_SCN_MEM_NOT_PAGED: "MEM_NOT_PAGED",
    IMAGE_SCN_MEM_SHARED: "MEM_SHARED",
    IMAGE_SCN_MEM_EXECUTE: "MEM_EXECUTE",
    IMAGE_SCN_MEM_READ: "MEM_READ",
    IMAGE_SCN_MEM_WRITE: "MEM_WRITE",
}

DIRECTORY_NAMES = {
    IMAGE_DIRECTORY_ENTRY_EXPORT: "EXPORT",
    IMAGE_DIRECTORY_ENTRY_IMPORT: "IMPORT",
    IMAGE_DIRECTORY_ENTRY_RESOURCE: "RESOURCE",
    IMAGE_DIRECTORY_ENTRY_EXCEPTION: "EXCEPTION",
    IMAGE_DIRECTORY_ENTRY_SECURITY: "SECURITY",
    IMAGE_DIRECTORY_ENTRY_BASERELOC: "BASERELOC",
    IMAGE_DIRECTORY_ENTRY_DEBUG: "DEBUG",
    IMAGE_DIRECTORY_ENTRY_ARCHITECTURE: "ARCHITECTURE",
    IMAGE_DIRECTORY_ENTRY_GLOBALPTR: "GLOBALPTR",
    IMAGE_DIRECTORY_ENTRY_TLS: "TLS",
    IMAGE_DIRECTORY_ENTRY_LOAD_CONFIG: "LOAD_CONFIG",
    IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT: "BOUND_IMPORT",
    IMAGE_DIRECTORY_ENTRY_IAT: "IAT",
    IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT: "DELAY_IMPORT",
    IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR: "CLR_RUNTIME",
    15: "RESERVED",
}

RELOCATION_TYPE_NAMES = {
    IMAGE_REL_BASED_ABSOLUTE: "ABSOLUTE",
    IMAGE_REL_BASED_HIGH: "HIGH",
    IMAGE_REL_BASED_LOW: "LOW",
    IMAGE_REL_BASED_HIGHLOW: "HIGHLOW",
    IMAGE_REL_BASED_HIGHADJ: "HIGHADJ",
    IMAGE_REL_BASED_ARM_MOV32: "ARM_MOV32",
    IMAGE_REL_BASED_RESERVED: "RESERVED",
    IMAGE_REL_BASED_THUMB_MOV32: "THUMB_MOV32",
    IMAGE_REL_BASED_RISCV_LOW12I: "RISCV_LOW12I",
    IMAGE_REL_BASED_MIPS_JMPADDR16: "MIPS_JMPADDR16",
    IMAGE_REL_BASED_DIR64: "DIR64",
}

RESOURCE_TYPE_NAMES = {
    RT_CURSOR: "CURSOR",
    RT_BITMAP: "BITMAP",
    RT_ICON: "ICON",
    RT_MENU: "MENU",
    RT_DIALOG: "DIALOG",
    RT_STRING: "STRING",
    RT_FONTDIR: "FONTDIR",
    RT_FONT: "FONT",
    RT_ACCELERATOR: "ACCELERATOR",
    RT_RCDATA: "RCDATA",
    RT_MESSAGETABLE: "MESSAGETABLE",
    RT_GROUP_CURSOR: "GROUP_CURSOR",
    RT_GROUP_ICON: "GROUP_ICON",
    RT_VERSION: "VERSION",
    RT_DLGINCLUDE: "DLGINCLUDE",
    RT_PLUGPLAY: "PLUGPLAY",
    RT_VXD: "VXD",
    RT_ANICURSOR: "ANICURSOR",
    RT_ANIICON: "ANIICON",
    RT_HTML: "HTML",
    RT_MANIFEST: "MANIFEST",
}


# =============================================================================
# Helper functions
# =============================================================================


def lookup_name(value: int, table: dict[int, str]) -> str:
    """Symbolic name for an enumerated value, or UNKNOWN(n)."""
    return table.get(value, f"UNKNOWN({value})")


def flag_names(value: int, table: dict[int, str]) -> list[str]:
    """Names of all flags set in value, in ascending bit order.

    Bits with no name are reported as hex literals so nothing is lost.
    """
    names = []
    remaining = value
    for bit in sorted(table):
        if value & bit:
            names.append(table[bit])
            remaining &= ~bit
    bit = 1
    while remaining:
        if remaining & bit:
            names.append(f"0x{bit:x}")
            remaining &= ~bit
        bit <<= 1
    return names


def section_flag_names(characteristics: int) -> list[str]:
    """Flag names for section characteristics, with the alignment nibble
    decoded as ALIGN_<n>BYTES instead of as individual bits."""
    names = flag_names(
        characteristics & ~IMAGE_SCN_ALIGN_MASK, SECTION_CHARACTERISTICS_NAMES
    )
    align = (characteristics & IMAGE_SCN_ALIGN_MASK) >> 20
    if align:
        names.append(f"ALIGN_{1 << (align - 1)}BYTES")
    return names
