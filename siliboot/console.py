# siliboot/console.py — salida serie capturada de una sesión QEMU
#
# Mientras la sesión vive, la consola es un flujo perezoso: se puede
# recorrer varias veces, pero siempre desde el principio (no hay seek).
# Al cerrarse queda materializada en una tupla finita.

import threading


class ConsoleStream:
    def __init__(self):
        self._lines: list[str] = []
        self._cond = threading.Condition()
        self._closed = False
        self._final: tuple | None = None

    def append(self, line: str):
        with self._cond:
            if self._closed:
                raise ValueError("consola cerrada")
            self._lines.append(line)
            self._cond.notify_all()

    def close(self):
        with self._cond:
            if not self._closed:
                self._closed = True
                self._final = tuple(self._lines)
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self):
        # cada iterador empieza en la línea 0 y bloquea hasta que haya
        # más líneas o la consola se cierre
        i = 0
        while True:
            with self._cond:
                while i >= len(self._lines) and not self._closed:
                    self._cond.wait()
                if i >= len(self._lines):
                    return
                line = self._lines[i]
            i += 1
            yield line

    def snapshot(self) -> tuple:
        with self._cond:
            return tuple(self._lines)

    @property
    def lines(self) -> tuple:
        """Líneas finales; solo válido después de close()."""
        if self._final is None:
            raise RuntimeError("la consola sigue abierta")
        return self._final

    def __len__(self):
        with self._cond:
            return len(self._lines)
