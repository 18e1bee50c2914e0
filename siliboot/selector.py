# siliboot/selector.py — elige qué build del kernel va dentro de la ISO
#
# La política es explícita y con nombre: "most-recent-wins" usa el build
# modificado más recientemente, sea debug o release. Empates de mtime:
# gana el perfil que aparece antes en la tupla de perfiles.

from dataclasses import dataclass
from pathlib import Path

from .common import log
from .config import PROFILES, Layout
from .errors import MissingArtifact


@dataclass(frozen=True)
class BuildArtifact:
    profile: str
    path: Path
    mtime: float | None
    exists: bool


def probe(profile: str, path) -> BuildArtifact:
    path = Path(path)
    try:
        st = path.stat()
    except FileNotFoundError:
        return BuildArtifact(profile, path, None, False)
    return BuildArtifact(profile, path, st.st_mtime, path.is_file())


def candidates(layout: Layout, profiles=PROFILES) -> list[BuildArtifact]:
    return [probe(p, layout.artifact(p)) for p in profiles]


def most_recent_wins(arts: list[BuildArtifact]) -> BuildArtifact:
    present = [(i, a) for i, a in enumerate(arts) if a.exists]
    if not present:
        raise MissingArtifact([a.path for a in arts])
    # mtime más alto primero; a igual mtime, menor índice de prioridad
    _, best = min(present, key=lambda ia: (-ia[1].mtime, ia[0]))
    return best


def first_available(arts: list[BuildArtifact]) -> BuildArtifact:
    """Ignora los mtime: el primer perfil existente en orden de prioridad."""
    for a in arts:
        if a.exists:
            return a
    raise MissingArtifact([a.path for a in arts])


STRATEGIES = {
    "most-recent-wins": most_recent_wins,
    "first-available":  first_available,
}


def select_artifact(layout: Layout, profiles=PROFILES,
                    strategy: str = "most-recent-wins") -> BuildArtifact:
    log("=== SELECCIONANDO KERNEL ===")
    try:
        pick = STRATEGIES[strategy]
    except KeyError:
        raise ValueError(f"estrategia desconocida: {strategy!r}") from None

    arts = candidates(layout, profiles)
    for a in arts:
        log(f"{'[OK]   ' if a.exists else '[--]   '} {a.profile:<8} {a.path}")
    chosen = pick(arts)
    log(f"[OK]    {strategy} → {chosen.profile} ({chosen.path})")
    return chosen
