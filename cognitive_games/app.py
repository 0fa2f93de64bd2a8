"""Pygame UI shell for the cognitive mini-games.

The menu lists four games:
- Memory (colour sequence recall)
- Attention (go/no-go vigilance)
- Executive Function (colour-word interference + tower puzzle)
- Visuospatial (mental rotation)

Deterministic timing/scoring/RNG/state lives in the engine modules; this
file only draws snapshots and forwards input.
"""

from __future__ import annotations

import logging
import os
import random
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pygame

from .clock import RealClock
from .cognitive_core import CompletionCallback, GameEngine, GameSnapshot
from .dual_task import DualTaskEngine, DualTaskPayload, build_dual_task_engine
from .mental_rotation import RotationEngine, RotationPayload, Shape, build_rotation_engine
from .results import ScoreReport
from .sequence_memory import SequenceEngine, SequencePayload, build_sequence_engine
from .vigilance import VigilanceEngine, VigilancePayload, build_vigilance_engine

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "COGNITIVE_GAMES_LOG_LEVEL"

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

COLOR_RGB: dict[str, tuple[int, int, int]] = {
    "red": (220, 60, 60),
    "blue": (60, 110, 230),
    "green": (50, 180, 90),
    "yellow": (235, 205, 60),
    "purple": (150, 80, 200),
    "orange": (240, 140, 40),
}

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)

_DIGIT_KEYS = {
    pygame.K_1: 0,
    pygame.K_2: 1,
    pygame.K_3: 2,
    pygame.K_4: 3,
    pygame.K_5: 4,
    pygame.K_6: 5,
}


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


EngineFactory = Callable[[CompletionCallback], GameEngine]


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


def _fit_label(font: pygame.font.Font, label: str, max_width: int) -> str:
    if max_width <= 0:
        return ""
    if font.size(label)[0] <= max_width:
        return label
    clipped = label
    while clipped and font.size(f"{clipped}...")[0] > max_width:
        clipped = clipped[:-1]
    return f"{clipped}..." if clipped else "..."


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._back()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def _activate(self) -> None:
        if not self._items:
            return
        self._items[self._selected].action()

    def _back(self) -> None:
        if self._is_root:
            self._app.quit()
        else:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        active_bg = (244, 248, 255)
        active_text = (14, 26, 74)

        surface.fill(BG)
        margin = max(10, min(26, w // 34))
        frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)

        header_h = max(34, min(52, h // 8))
        header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, header_h)
        pygame.draw.rect(surface, (18, 30, 118), header)
        pygame.draw.line(surface, BORDER, (header.x, header.bottom), (header.right, header.bottom), 1)
        title = self._title_font.render(self._title, True, TEXT_MAIN)
        surface.blit(title, title.get_rect(center=(frame.centerx, header.centery)))

        item_count = max(1, len(self._items))
        row_h = 44
        gap = 10
        y = header.bottom + max(16, (frame.h - header_h - item_count * (row_h + gap)) // 2)
        for idx, item in enumerate(self._items):
            row = pygame.Rect(frame.x + 40, y, frame.w - 80, row_h)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, active_bg, row)
                pygame.draw.rect(surface, (120, 142, 196), row, 2)
            else:
                pygame.draw.rect(surface, (9, 20, 106), row)
                pygame.draw.rect(surface, (62, 84, 152), row, 1)
            label = _fit_label(self._item_font, item.label, row.w - 20)
            text = self._item_font.render(label, True, active_text if selected else TEXT_MAIN)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h + gap

        footer = "Enter/Space: Select  |  Esc/Backspace: Back"
        foot = self._hint_font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class GameScreen:
    """Hosts one engine: forwards input, draws its snapshot, shows the report."""

    def __init__(self, app: App, *, engine_factory: EngineFactory) -> None:
        self._app = app
        self._report: ScoreReport | None = None
        self._engine = engine_factory(self._on_complete)

        self._small_font = pygame.font.Font(None, 24)
        self._mid_font = pygame.font.Font(None, 40)
        self._big_font = pygame.font.Font(None, 72)

        # Mouse hitboxes (rect -> input index), refreshed during render.
        self._hitboxes: list[tuple[pygame.Rect, int]] = []
        self._field_rect: pygame.Rect | None = None
        self._field_scale = 1.0

    @property
    def engine(self) -> GameEngine:
        return self._engine

    def _on_complete(self, report: ScoreReport) -> None:
        self._report = report

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            self._handle_key(event.key)
        elif event.type == pygame.MOUSEBUTTONDOWN and getattr(event, "button", 0) == 1:
            pos = getattr(event, "pos", None)
            if pos is not None:
                self._handle_click(pos)

    def _handle_key(self, key: int) -> None:
        engine = self._engine
        if key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if not engine.can_exit():
                engine.abandon()
            self._app.pop()
            return
        if engine.is_finished:
            if key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._app.pop()
            return
        if key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            engine.start()
            return
        if key == pygame.K_p:
            if engine.paused:
                engine.resume()
            else:
                engine.pause()
            return
        index = _DIGIT_KEYS.get(key)
        if index is not None:
            self._send_index(index)

    def _handle_click(self, pos: tuple[int, int]) -> None:
        engine = self._engine
        if isinstance(engine, VigilanceEngine) and self._field_rect is not None:
            if self._field_rect.collidepoint(pos):
                fx = (pos[0] - self._field_rect.x) / self._field_scale
                fy = (pos[1] - self._field_rect.y) / self._field_scale
                engine.click_at(fx, fy)
            return
        for rect, index in self._hitboxes:
            if rect.collidepoint(pos):
                self._send_index(index)
                return

    def _send_index(self, index: int) -> None:
        engine = self._engine
        if isinstance(engine, SequenceEngine):
            engine.tap(index)
        elif isinstance(engine, DualTaskEngine):
            if engine.current_stimulus is not None:
                engine.answer(index)
            else:
                engine.select_peg(index)
        elif isinstance(engine, RotationEngine):
            engine.select_option(index)

    def render(self, surface: pygame.Surface) -> None:
        self._engine.update()
        snap = self._engine.snapshot()
        self._hitboxes = []
        self._field_rect = None

        w, h = surface.get_size()
        surface.fill(BG)
        body = pygame.Rect(20, 110, w - 40, h - 160)

        surface.blit(self._mid_font.render(snap.title, True, TEXT_MAIN), (20, 16))
        prompt = _fit_label(self._small_font, snap.prompt, w - 40)
        surface.blit(self._small_font.render(prompt, True, TEXT_MAIN), (20, 58))
        surface.blit(self._small_font.render(self._status_line(snap), True, TEXT_MUTED), (20, 82))

        if self._report is not None:
            self._render_report(surface, body, self._report)
        else:
            p = snap.payload
            if isinstance(p, SequencePayload):
                self._render_sequence(surface, body, p)
            elif isinstance(p, VigilancePayload):
                self._render_vigilance(surface, body, p)
            elif isinstance(p, DualTaskPayload):
                self._render_dual_task(surface, body, p)
            elif isinstance(p, RotationPayload):
                self._render_rotation(surface, body, p)

        if snap.paused:
            label = self._big_font.render("PAUSED", True, TEXT_MAIN)
            surface.blit(label, label.get_rect(center=body.center))

        hint = snap.input_hint if self._report is None else "Enter: back to menu"
        foot = self._small_font.render(_fit_label(self._small_font, hint, w - 40), True, TEXT_MUTED)
        surface.blit(foot, (20, h - 34))

    def _status_line(self, snap: GameSnapshot) -> str:
        parts = [f"Phase: {snap.phase.value}"]
        if snap.trial_total is not None:
            parts.append(f"Trial {snap.trial_index}/{snap.trial_total}")
        if snap.lives is not None:
            parts.append(f"Lives {snap.lives}")
        if snap.time_remaining_s is not None:
            parts.append(f"Time {int(snap.time_remaining_s)}s")
        parts.append(f"Points {int(snap.running_score)}")
        return "  |  ".join(parts)

    def _render_sequence(self, surface: pygame.Surface, body: pygame.Rect, p: SequencePayload) -> None:
        n = len(p.palette)
        size = min(110, (body.w - 20 * (n + 1)) // max(1, n))
        x = body.centerx - (n * size + (n - 1) * 20) // 2
        y = body.centery - size // 2
        for i, name in enumerate(p.palette):
            rect = pygame.Rect(x + i * (size + 20), y, size, size)
            rgb = COLOR_RGB.get(name, (128, 128, 128))
            if p.highlighted == i:
                pygame.draw.rect(surface, (255, 255, 255), rect.inflate(14, 14))
            elif p.highlighted is not None or not p.accepting_input:
                rgb = tuple(c // 2 for c in rgb)
            pygame.draw.rect(surface, rgb, rect)
            surface.blit(self._small_font.render(str(i + 1), True, TEXT_MAIN), (rect.x + 6, rect.y + 6))
            self._hitboxes.append((rect, i))
        info = f"{p.level_name}  span {p.span}  entered {p.entered}/{p.sequence_length}"
        surface.blit(self._small_font.render(info, True, TEXT_MUTED), (body.x, body.bottom - 24))

    def _render_vigilance(self, surface: pygame.Surface, body: pygame.Rect, p: VigilancePayload) -> None:
        scale = min(body.w / p.field_width, body.h / p.field_height)
        field = pygame.Rect(0, 0, int(p.field_width * scale), int(p.field_height * scale))
        field.center = body.center
        self._field_rect = field
        self._field_scale = scale
        pygame.draw.rect(surface, PANEL_BG, field)
        pygame.draw.rect(surface, BORDER, field, 1)
        if p.countdown is not None:
            label = self._big_font.render(str(p.countdown), True, TEXT_MAIN)
            surface.blit(label, label.get_rect(center=field.center))
            return
        radius = max(6, int(p.hit_radius * scale))
        for stim in p.stimuli:
            center = (field.x + int(stim.x * scale), field.y + int(stim.y * scale))
            color = COLOR_RGB["green"] if stim.is_target else COLOR_RGB["red"]
            pygame.draw.circle(surface, color, center, radius)

    def _render_dual_task(self, surface: pygame.Surface, body: pygame.Rect, p: DualTaskPayload) -> None:
        if p.countdown is not None:
            label = self._big_font.render(str(p.countdown), True, TEXT_MAIN)
            surface.blit(label, label.get_rect(center=body.center))
            return
        if p.word is not None and p.ink is not None:
            word = self._big_font.render(p.palette[p.word].upper(), True, COLOR_RGB[p.palette[p.ink]])
            surface.blit(word, word.get_rect(center=(body.centerx, body.y + 60)))
            n = len(p.palette)
            bw = min(130, (body.w - 12 * (n + 1)) // max(1, n))
            x = body.centerx - (n * bw + (n - 1) * 12) // 2
            for i, name in enumerate(p.palette):
                rect = pygame.Rect(x + i * (bw + 12), body.y + 150, bw, 48)
                pygame.draw.rect(surface, (9, 20, 106), rect)
                pygame.draw.rect(surface, (62, 84, 152), rect, 1)
                text = self._small_font.render(f"{i + 1} {name}", True, TEXT_MAIN)
                surface.blit(text, text.get_rect(center=rect.center))
                self._hitboxes.append((rect, i))
            return

        peg_w = body.w // 3
        base_y = body.bottom - 20
        disk_h = 22
        max_disk = max((d for peg in p.pegs for d in peg), default=1)
        for i, peg in enumerate(p.pegs):
            area = pygame.Rect(body.x + i * peg_w, body.y, peg_w, body.h)
            if p.selected_peg == i:
                pygame.draw.rect(surface, (18, 30, 118), area)
            pygame.draw.rect(surface, TEXT_MUTED, (area.centerx - 4, body.y + 30, 8, base_y - body.y - 30))
            for level, disk in enumerate(peg):
                width = int((peg_w - 40) * disk / max_disk)
                rect = pygame.Rect(0, 0, width, disk_h)
                rect.midbottom = (area.centerx, base_y - level * (disk_h + 2))
                pygame.draw.rect(surface, COLOR_RGB["orange"], rect)
            self._hitboxes.append((area, i))

    def _render_rotation(self, surface: pygame.Surface, body: pygame.Rect, p: RotationPayload) -> None:
        cell = max(8, min(28, body.h // 8))
        self._draw_shape(surface, p.shape, (body.x + 20, body.y + 10), cell, COLOR_RGB["blue"])
        label = self._small_font.render(f"{p.angle} deg", True, TEXT_MAIN)
        surface.blit(label, (body.x + 20, body.y + 20 + cell * 3))

        slot = (body.w - 40) // 4
        top = body.y + cell * 3 + 60
        for i, option in enumerate(p.options):
            rect = pygame.Rect(body.x + 20 + i * slot, top, slot - 20, cell * 3 + 40)
            pygame.draw.rect(surface, (9, 20, 106), rect)
            pygame.draw.rect(surface, (62, 84, 152), rect, 1)
            self._draw_shape(surface, option, (rect.x + 10, rect.y + 30), cell, COLOR_RGB["yellow"])
            surface.blit(self._small_font.render(str(i + 1), True, TEXT_MAIN), (rect.x + 6, rect.y + 6))
            self._hitboxes.append((rect, i))

    def _draw_shape(
        self,
        surface: pygame.Surface,
        shape: Shape,
        origin: tuple[int, int],
        cell: int,
        color: tuple[int, int, int],
    ) -> None:
        ox, oy = origin
        for r, row in enumerate(shape):
            for c, filled in enumerate(row):
                rect = pygame.Rect(ox + c * cell, oy + r * cell, cell - 2, cell - 2)
                if filled:
                    pygame.draw.rect(surface, color, rect)
                else:
                    pygame.draw.rect(surface, (30, 40, 120), rect, 1)

    def _render_report(self, surface: pygame.Surface, body: pygame.Rect, report: ScoreReport) -> None:
        score = self._big_font.render(f"{report.score}/100", True, TEXT_MAIN)
        surface.blit(score, score.get_rect(midtop=(body.centerx, body.y)))
        lines = [
            f"Accuracy {report.accuracy}%   Mean reaction time {report.reaction_time_ms} ms",
            f"{report.difficulty}   Trials {report.trials}",
        ]
        shown = [(k, v) for k, v in report.metrics.items() if k != "points"][:8]
        lines.extend(f"{k.replace('_', ' ')}: {v:.0f}" for k, v in shown)
        y = body.y + 80
        for line in lines:
            surface.blit(self._small_font.render(line, True, TEXT_MUTED), (body.x + 40, y))
            y += 24


def configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "WARNING").strip().upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    configure_logging()
    pygame.init()

    pygame.display.set_caption("Cognitive Games")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    real_clock = RealClock()

    def open_game(builder: Callable[..., GameEngine]) -> Callable[[], None]:
        def _open() -> None:
            seed = _new_seed()
            logger.info("opening %s with seed %d", builder.__name__, seed)
            app.push(
                GameScreen(
                    app,
                    engine_factory=lambda on_complete: builder(
                        clock=real_clock,
                        seed=seed,
                        on_complete=on_complete,
                    ),
                )
            )

        return _open

    main_items = [
        MenuItem("Memory", open_game(build_sequence_engine)),
        MenuItem("Attention", open_game(build_vigilance_engine)),
        MenuItem("Executive Function", open_game(build_dual_task_engine)),
        MenuItem("Visuospatial", open_game(build_rotation_engine)),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Cognitive Games", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
