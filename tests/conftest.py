import pathlib

import pytest

from pe_test_utils import PeBuilder, build_sample_builder


@pytest.fixture
def sample_builder() -> PeBuilder:
    """Builder for the PE32 sample DLL, ready to be tweaked before build()."""
    return build_sample_builder()


@pytest.fixture(scope="session")
def sample_pe32() -> bytes:
    """PE32 sample DLL with every supported directory present."""
    return build_sample_builder().build()


@pytest.fixture(scope="session")
def sample_pe64() -> bytes:
    """PE32+ variant of the sample DLL."""
    return build_sample_builder(pe64=True).build()


@pytest.fixture
def sample_pe32_path(sample_pe32: bytes, tmp_path: pathlib.Path) -> pathlib.Path:
    """The PE32 sample written to disk."""
    path = tmp_path / "sample32.dll"
    path.write_bytes(sample_pe32)
    return path


@pytest.fixture
def sample_pe64_path(sample_pe64: bytes, tmp_path: pathlib.Path) -> pathlib.Path:
    """The PE32+ sample written to disk."""
    path = tmp_path / "sample64.dll"
    path.write_bytes(sample_pe64)
    return path


@pytest.fixture
def minimal_pe() -> bytes:
    """PE32 image with one code section and no data directories."""
    builder = PeBuilder()
    builder.add_section(".text", 0x1000, b"\xc3" * 0x10, virtual_size=0x200)
    return builder.build()
