# siliboot/imagecheck.py — diagnóstico estructural de la ISO híbrida
#
# Estructura que se espera después de xorriso + limine-deploy:
#   LBA 0 (512 B) : MBR híbrido — código de Limine, tabla de particiones
#                   protectora y firma 0x55AA
#   LBA 16        : Primary Volume Descriptor (CD001)
#   LBA 17+       : Boot Record Descriptor (El Torito) → catálogo de arranque
#   ...           : Volume Descriptor Set Terminator
#   catálogo      : entrada de validación (80x86) + sección EFI (0xEF)

import struct
from dataclasses import dataclass, field
from pathlib import Path

ISECT          = 2048  # tamaño de sector ISO
MBR_SIG_OFF    = 0x1FE
MBR_PART_OFF   = 0x1BE
MBR_CODE_LEN   = 440
FIRST_VD_LBA   = 16
MAX_VDS        = 32

PLATFORM_X86   = 0x00
PLATFORM_EFI   = 0xEF
EL_TORITO_ID   = b'EL TORITO SPECIFICATION'


@dataclass
class ImageReport:
    path: Path
    size: int = 0
    mbr_signature: bool = False
    mbr_boot_code: bool = False
    partitions: list = field(default_factory=list)   # tipos de partición MBR
    gpt: bool = False
    iso9660: bool = False
    volume_sectors: int = 0
    el_torito: bool = False
    catalog_lba: int | None = None
    platforms: list = field(default_factory=list)    # plataformas del catálogo

    @property
    def bootable_legacy(self) -> bool:
        return (self.mbr_signature and self.mbr_boot_code and self.el_torito
                and PLATFORM_X86 in self.platforms)

    @property
    def bootable_efi(self) -> bool:
        return self.el_torito and PLATFORM_EFI in self.platforms

    @property
    def problems(self) -> list[str]:
        out = []
        if not self.mbr_signature:
            out.append("MBR sin firma 0x55AA")
        elif not self.mbr_boot_code:
            out.append("MBR sin código de arranque (¿falta limine-deploy?)")
        if not self.partitions and not self.gpt:
            out.append("sin tabla de particiones protectora")
        if not self.iso9660:
            out.append("sin Primary Volume Descriptor ISO 9660")
        if not self.el_torito:
            out.append("sin Boot Record Descriptor El Torito")
        else:
            if PLATFORM_X86 not in self.platforms:
                out.append("catálogo El Torito sin entrada BIOS")
            if PLATFORM_EFI not in self.platforms:
                out.append("catálogo El Torito sin entrada EFI")
        return out


def _read_sector(f, lba: int) -> bytes:
    f.seek(lba * ISECT)
    return f.read(ISECT)


def _catalog_platforms(cat: bytes) -> list[int]:
    if len(cat) < 64 or cat[0] != 0x01:
        return []
    platforms = [cat[1]]
    # después de validación (0) y entrada por defecto (32) vienen las secciones
    off = 64
    while off + 32 <= len(cat):
        hdr = cat[off]
        if hdr not in (0x90, 0x91):
            break
        platforms.append(cat[off + 1])
        n_entries = struct.unpack_from('<H', cat, off + 2)[0]
        off += 32 * (1 + n_entries)
        if hdr == 0x91:
            break
    return platforms


def inspect_image(path) -> ImageReport:
    path = Path(path)
    rep = ImageReport(path=path, size=path.stat().st_size)

    with open(path, "rb") as f:
        mbr = f.read(512)
        if len(mbr) == 512:
            rep.mbr_signature = mbr[MBR_SIG_OFF:MBR_SIG_OFF + 2] == b'\x55\xAA'
            rep.mbr_boot_code = any(mbr[:MBR_CODE_LEN])
            for i in range(4):
                ptype = mbr[MBR_PART_OFF + 16 * i + 4]
                if ptype:
                    rep.partitions.append(ptype)
            rep.gpt = f.read(8) == b'EFI PART'

        for lba in range(FIRST_VD_LBA, FIRST_VD_LBA + MAX_VDS):
            vd = _read_sector(f, lba)
            if len(vd) < ISECT or vd[1:6] != b'CD001':
                break
            vtype = vd[0]
            if vtype == 0xFF:
                break
            if vtype == 1 and not rep.iso9660:
                rep.iso9660 = True
                rep.volume_sectors = struct.unpack_from('<I', vd, 80)[0]
            elif vtype == 0 and vd[7:7 + len(EL_TORITO_ID)] == EL_TORITO_ID:
                rep.el_torito = True
                rep.catalog_lba = struct.unpack_from('<I', vd, 71)[0]

        if rep.catalog_lba is not None:
            rep.platforms = _catalog_platforms(_read_sector(f, rep.catalog_lba))

    return rep


def hexdump(data: bytes, offset: int = 0, length: int = 64) -> list[str]:
    out = []
    for i in range(0, min(len(data), length), 16):
        hex_str = ' '.join(f'{b:02x}' for b in data[i:i+16])
        ascii_str = ''.join(chr(b) if 32 <= b < 127 else '.' for b in data[i:i+16])
        out.append(f"{offset+i:08x}  {hex_str:<48}  {ascii_str}")
    return out
