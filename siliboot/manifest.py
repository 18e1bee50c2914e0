# siliboot/manifest.py — contrato de archivos del medio de arranque
#
# Limine busca sus archivos por nombre y ubicación exactos: estos pares
# (origen → destino) no se pueden renombrar.

from dataclasses import dataclass
from pathlib import PurePosixPath


@dataclass(frozen=True)
class ManifestEntry:
    source: PurePosixPath        # relativo a la raíz del repositorio
    destination: PurePosixPath   # relativo a la raíz de la ISO


def _e(src: str, dst: str) -> ManifestEntry:
    return ManifestEntry(PurePosixPath(src), PurePosixPath(dst))


BOOTLOADER_MANIFEST = (
    _e("bin/src/limine/limine-cd-efi.bin", "boot/limine-cd-efi.bin"),
    _e("bin/src/limine/limine-cd.bin",     "boot/limine-cd.bin"),
    _e("bin/src/limine/limine.sys",        "boot/limine.sys"),
    _e("iso/boot/limine.cfg",              "boot/limine.cfg"),
)

# limine.cfg carga el kernel con este nombre
KERNEL_DESTINATION = PurePosixPath("boot/silicium.elf")

BIOS_BOOT_IMAGE = PurePosixPath("boot/limine-cd.bin")
EFI_BOOT_IMAGE  = PurePosixPath("boot/limine-cd-efi.bin")


def staged_names(manifest=BOOTLOADER_MANIFEST) -> list[str]:
    """Todos los archivos que debe contener el staging, en orden."""
    return [str(e.destination) for e in manifest] + [str(KERNEL_DESTINATION)]
