from __future__ import annotations

import threading
from typing import Optional

import cv2
import numpy as np
from PIL import Image, ImageOps, ImageTk
from tkinter import ttk


class FrameDisplay:
    """Hands the newest BGR frame from the loop thread to a Tk label.

    ``submit`` may be called from any thread; only the newest frame is kept.
    """

    def __init__(self, target_label: ttk.Label, *, target_size: Optional[tuple[int, int]] = None) -> None:
        self.label = target_label
        self.target_size = target_size
        self._lock = threading.Lock()
        self._pending: Optional[np.ndarray] = None
        self._photo: Optional[ImageTk.PhotoImage] = None
        self._job: Optional[str] = None
        self.border: Optional[tuple[int, int, int]] = None

    def start(self, interval_ms: int = 30) -> None:
        if self._job is None:
            self._refresh(interval_ms)

    def stop(self) -> None:
        if self._job is not None:
            self.label.after_cancel(self._job)
            self._job = None

    def submit(self, frame: np.ndarray) -> None:
        with self._lock:
            self._pending = frame

    def set_border(self, color: Optional[tuple[int, int, int]]) -> None:
        """Outline the feed in ``color`` (BGR) while a card is awaiting the operator."""
        self.border = color

    def clear(self) -> None:
        with self._lock:
            self._pending = None
        self._photo = None
        self.label.configure(image="")

    def _refresh(self, interval_ms: int) -> None:
        with self._lock:
            frame, self._pending = self._pending, None
        if frame is not None:
            if self.border is not None:
                frame = frame.copy()
                height, width = frame.shape[:2]
                cv2.rectangle(frame, (0, 0), (width - 1, height - 1), self.border, max(4, width // 80))
            image = Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
            if self.target_size:
                image = self._letterbox(image, self.target_size)
            self._photo = ImageTk.PhotoImage(image=image)
            self.label.configure(image=self._photo)
        self._job = self.label.after(interval_ms, lambda: self._refresh(interval_ms))

    @staticmethod
    def _letterbox(image: Image.Image, target: tuple[int, int]) -> Image.Image:
        if target[0] <= 0 or target[1] <= 0:
            return image
        contained = ImageOps.contain(image, target, method=Image.LANCZOS)
        if contained.size == target:
            return contained
        canvas = Image.new("RGB", target, color=(0, 0, 0))
        canvas.paste(contained, ((target[0] - contained.width) // 2, (target[1] - contained.height) // 2))
        return canvas
