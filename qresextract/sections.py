"""
Byte ranges to search for embedded resources.

rcc output ends up in a read-only data section, so for PE and ELF images
only initialised, non-executable sections are handed to the locator.
Anything else is searched as a single range.
"""

import logging
import pathlib
from io import BytesIO
from typing import List, Tuple

import pefile
from elftools.common.exceptions import ELFError
from elftools.elf.constants import SH_FLAGS
from elftools.elf.elffile import ELFFile

log = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
PE_MAGIC = b"MZ"


def pe_sections(blob) -> List[Tuple[str, bytes]]:
    try:
        pe = pefile.PE(data=blob, fast_load=True)
    except pefile.PEFormatError as e:
        log.debug(f"Not a usable PE image: {e}")
        return []

    initialised = pefile.SECTION_CHARACTERISTICS["IMAGE_SCN_CNT_INITIALIZED_DATA"]
    executable = pefile.SECTION_CHARACTERISTICS["IMAGE_SCN_MEM_EXECUTE"]

    ranges = []
    for section in pe.sections:
        name = section.Name.rstrip(b"\x00").decode("ascii", "replace")
        if not section.Characteristics & initialised or section.Characteristics & executable:
            continue
        ranges.append((name, section.get_data()))
    pe.close()
    return ranges


def elf_sections(blob) -> List[Tuple[str, bytes]]:
    try:
        elf = ELFFile(BytesIO(blob))
        ranges = []
        for section in elf.iter_sections():
            flags = section["sh_flags"]
            if section["sh_type"] != "SHT_PROGBITS" or not flags & SH_FLAGS.SHF_ALLOC:
                continue
            if flags & SH_FLAGS.SHF_EXECINSTR:
                continue
            ranges.append((section.name, section.data()))
    except ELFError as e:
        log.debug(f"Not a usable ELF image: {e}")
        return []
    return ranges


def sections_from_bytes(blob, name="<input>") -> List[Tuple[str, bytes]]:
    """(range_name, bytes) pairs for `blob`; the whole blob if no data section is found."""
    ranges = []
    if blob.startswith(PE_MAGIC):
        ranges = pe_sections(blob)
    elif blob.startswith(ELF_MAGIC):
        ranges = elf_sections(blob)

    if ranges:
        log.debug(f"{name}: searching {len(ranges)} data sections ({', '.join(r[0] for r in ranges)})")
        return ranges
    return [(name, blob)]


def read_sections(path) -> List[Tuple[str, bytes]]:
    path = pathlib.Path(path)
    return sections_from_bytes(path.read_bytes(), path.name)
