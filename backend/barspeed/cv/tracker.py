"""
Colour-and-motion tracker for a barbell sleeve cap.

TRACKING STRATEGY (one call per frame):
1. Predict: last position + velocity * lead (lead grows while lost)
2. Search window around the prediction, sized by speed, direction reversal
   and loss count
3. Weight each pixel by colour similarity to the reference colour, proximity
   to the prediction and distance from the established bar path
4. Weighted centroid of colour-matching pixels; best colour weight = confidence
5. Accept: clamp the step, smooth the displacement, adapt the reference colour
6. Reject: count the loss, try a coarse full-frame re-acquisition
7. Still lost: coast on the prediction instead of freezing
8. Update the heading used as the path prior

The tracker is a pure step function. TrackerState goes in, a new
TrackerState comes out inside TrackResult. TrackingSession wraps that for
callers that want a stateful handle.
"""

import math
import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np
from scipy import ndimage

from barspeed.cv.video_source import Frame

logger = logging.getLogger(__name__)

Vector = Tuple[float, float]


@dataclass(frozen=True)
class ReferenceColor:
    """Expected RGB signature of the target."""
    r: float
    g: float
    b: float

    def as_array(self) -> np.ndarray:
        return np.array([self.r, self.g, self.b], dtype=np.float32)

    def blend(self, other: "ReferenceColor", rate: float) -> "ReferenceColor":
        """Exponential moving average toward `other`."""
        keep = 1.0 - rate
        return ReferenceColor(
            r=self.r * keep + other.r * rate,
            g=self.g * keep + other.g * rate,
            b=self.b * keep + other.b * rate,
        )


@dataclass(frozen=True)
class TrackerConfig:
    """
    Tracker tuning. Distances are pixels, speeds are pixels per frame.

    Defaults come from tuning on 720p-1080p phone footage at 30fps.
    """
    # Prediction lead: 1 + lead_per_lost_frame * loss_count
    lead_per_lost_frame: float = 0.25

    # Search window
    min_search_radius: float = 55.0
    max_search_radius: float = 180.0
    search_speed_gain: float = 2.9
    reversal_speed: float = 10.0          # below this = possibly reversing
    reversal_recent_speed: float = 25.0   # ...if the last good speed was above this
    reversal_boost: float = 1.9
    lost_search_gain: float = 0.5         # 1 + gain * loss_count
    sample_stride: int = 1

    # Speed at which matching is fully in "fast" mode
    fast_speed: float = 25.0

    # Colour matching
    color_sigma: float = 35.0
    fast_color_sigma_gain: float = 1.0
    position_sigma_ratio: float = 0.5     # of the search radius
    position_balance: float = 1.0         # proximity exponent when slow, 0 when fast
    color_weight_threshold: float = 0.5
    fast_color_weight_threshold: float = 0.3
    accept_threshold: float = 0.6
    fast_accept_threshold: float = 0.4

    # Path prior
    path_sigma_ratio: float = 1.5         # of the target radius
    relaxed_path_factor: float = 3.0
    heading_min_motion: float = 3.0
    heading_smoothing: float = 0.9

    # Step limits and smoothing
    min_max_step: float = 40.0
    max_max_step: float = 120.0
    max_step_speed_gain: float = 1.5
    displacement_alpha: float = 0.7       # weight of the new displacement when slow
    fast_displacement_alpha: float = 0.9
    max_velocity: float = 60.0

    # Loss handling
    max_lost_frames: int = 10
    velocity_decay: float = 0.95
    min_loss_drift: float = 0.5

    # Re-acquisition
    reacquire_after: int = 3
    reacquire_stride: int = 4
    reacquire_threshold: float = 0.6
    reacquire_sigma_ratio: float = 0.5    # of the frame diagonal

    # Reference colour adaptation
    adapt_confidence: float = 0.9
    adapt_rate: float = 0.1
    reference_sample_ratio: float = 0.5   # of the target radius


@dataclass(frozen=True)
class TrackerState:
    """Complete tracker state carried from frame to frame."""
    position: Vector
    velocity: Vector = (0.0, 0.0)
    trajectory_direction: Vector = (0.0, 1.0)
    consecutive_loss_count: int = 0
    reference_color: Optional[ReferenceColor] = None
    last_good_speed: float = 0.0

    @property
    def speed(self) -> float:
        return math.hypot(self.velocity[0], self.velocity[1])


@dataclass(frozen=True)
class TrackResult:
    """Outcome of tracking one frame."""
    position: Vector
    confidence: float
    lost: bool
    state: TrackerState
    predicted: Vector = (0.0, 0.0)
    search_radius: float = 0.0
    reacquired: bool = False


def _lerp(slow: float, fast: float, t: float) -> float:
    return slow + (fast - slow) * t


def _clamp_vector(vx: float, vy: float, limit: float) -> Vector:
    length = math.hypot(vx, vy)
    if length > limit and length > 0:
        ratio = limit / length
        return vx * ratio, vy * ratio
    return vx, vy


def _color_weights(pixels: np.ndarray, reference: ReferenceColor, sigma: float) -> np.ndarray:
    """Gaussian falloff on Euclidean RGB distance."""
    diff = pixels.astype(np.float32) - reference.as_array()
    dist2 = np.einsum("...c,...c->...", diff, diff)
    return np.exp(-dist2 / (2.0 * sigma * sigma))


def sample_region_color(
    image: np.ndarray,
    center: Vector,
    radius: float
) -> Optional[ReferenceColor]:
    """Mean colour of the pixels within `radius` of `center`."""
    height, width = image.shape[:2]
    cx, cy = center
    r = max(1.0, radius)
    x0 = max(0, int(math.floor(cx - r)))
    x1 = min(width, int(math.floor(cx + r)) + 1)
    y0 = max(0, int(math.floor(cy - r)))
    y1 = min(height, int(math.floor(cy + r)) + 1)
    if x1 <= x0 or y1 <= y0:
        return None

    ys, xs = np.mgrid[y0:y1, x0:x1]
    mask = (xs - cx) ** 2 + (ys - cy) ** 2 <= r * r
    if not mask.any():
        return None

    mean = image[y0:y1, x0:x1][mask].astype(np.float64).mean(axis=0)
    return ReferenceColor(r=float(mean[0]), g=float(mean[1]), b=float(mean[2]))


def _reacquire(
    image: np.ndarray,
    reference: ReferenceColor,
    predicted: Vector,
    color_sigma: float,
    config: TrackerConfig
) -> Optional[Tuple[Vector, float, float]]:
    """
    Coarse full-frame scan for the best colour match.

    Returns (position, colour weight, score) or None.
    """
    height, width = image.shape[:2]
    stride = max(1, config.reacquire_stride)
    coarse = image[::stride, ::stride]
    color_w = _color_weights(coarse, reference, color_sigma)

    ys, xs = np.mgrid[0:coarse.shape[0], 0:coarse.shape[1]]
    xs = xs * stride
    ys = ys * stride
    sigma = max(1.0, config.reacquire_sigma_ratio * math.hypot(width, height))
    dist2 = (xs - predicted[0]) ** 2 + (ys - predicted[1]) ** 2
    score = color_w * np.exp(-dist2 / (2.0 * sigma * sigma))

    best = np.unravel_index(int(np.argmax(score)), score.shape)
    best_score = float(score[best])
    if best_score < config.reacquire_threshold:
        return None

    position = (float(xs[best]), float(ys[best]))
    return position, float(color_w[best]), best_score


def _refine(
    image: np.ndarray,
    reference: ReferenceColor,
    center: Vector,
    radius: float,
    color_sigma: float,
    threshold: float
) -> Vector:
    """Colour-weighted centroid in a small window around a coarse hit."""
    height, width = image.shape[:2]
    x0 = max(0, int(math.floor(center[0] - radius)))
    x1 = min(width, int(math.floor(center[0] + radius)) + 1)
    y0 = max(0, int(math.floor(center[1] - radius)))
    y1 = min(height, int(math.floor(center[1] + radius)) + 1)
    if x1 <= x0 or y1 <= y0:
        return center

    color_w = _color_weights(image[y0:y1, x0:x1], reference, color_sigma)
    weights = np.where(color_w > threshold, color_w, 0.0)
    if weights.sum() <= 0:
        return center
    row, col = ndimage.center_of_mass(weights)
    return (x0 + float(col), y0 + float(row))


def track_frame(
    frame: Frame,
    state: TrackerState,
    target_radius: float,
    config: Optional[TrackerConfig] = None
) -> TrackResult:
    """
    Locate the target in `frame` given the previous state.

    Never raises for a bad match: loss is absorbed into the returned state.
    """
    config = config or TrackerConfig()
    if target_radius <= 0:
        raise ValueError(f"target_radius must be > 0, got {target_radius}")

    image = frame.image
    height, width = image.shape[:2]

    reference = state.reference_color
    if reference is None:
        reference = sample_region_color(
            image, state.position, target_radius * config.reference_sample_ratio
        )
        if reference is None:
            return TrackResult(position=state.position, confidence=0.0, lost=True, state=state,
                               predicted=state.position)
        state = replace(state, reference_color=reference)

    lx, ly = state.position
    vx, vy = state.velocity
    loss = state.consecutive_loss_count

    # =============================================
    # 1. Prediction
    # =============================================
    lead = 1.0 + config.lead_per_lost_frame * loss
    px, py = lx + vx * lead, ly + vy * lead

    # =============================================
    # 2. Adaptive search window
    # =============================================
    speed = state.speed
    effective_speed = max(speed, state.last_good_speed * (0.95 if loss > 0 else 0.75))
    reversing = speed < config.reversal_speed and state.last_good_speed > config.reversal_recent_speed
    reversal_boost = config.reversal_boost if reversing else 1.0
    lost_boost = 1.0 + config.lost_search_gain * loss

    min_radius = max(config.min_search_radius, 2.0 * target_radius)
    search_radius = float(np.clip(
        effective_speed * config.search_speed_gain * reversal_boost * lost_boost,
        min_radius,
        max(min_radius, config.max_search_radius),
    ))

    x0 = max(0, int(math.floor(px - search_radius)))
    x1 = min(width, int(math.floor(px + search_radius)) + 1)
    y0 = max(0, int(math.floor(py - search_radius)))
    y1 = min(height, int(math.floor(py + search_radius)) + 1)
    if x1 <= x0 or y1 <= y0:
        logger.debug(f"Search window outside frame at prediction ({px:.1f}, {py:.1f})")
        return TrackResult(position=state.position, confidence=0.0, lost=True, state=state,
                           predicted=(px, py), search_radius=search_radius)

    # Motion blur widens colour tolerance and makes proximity less reliable
    fast = min(1.0, effective_speed / config.fast_speed) if config.fast_speed > 0 else 0.0
    color_sigma = config.color_sigma * (1.0 + config.fast_color_sigma_gain * fast)
    weight_threshold = _lerp(config.color_weight_threshold, config.fast_color_weight_threshold, fast)
    accept_threshold = _lerp(config.accept_threshold, config.fast_accept_threshold, fast)
    balance = config.position_balance * (1.0 - fast)

    # =============================================
    # 3. Per-pixel match weights
    # =============================================
    stride = max(1, config.sample_stride)
    window = image[y0:y1:stride, x0:x1:stride]
    color_w = _color_weights(window, reference, color_sigma)

    ys, xs = np.mgrid[0:window.shape[0], 0:window.shape[1]]
    xs = x0 + xs * stride
    ys = y0 + ys * stride

    position_sigma = search_radius * config.position_sigma_ratio
    dist2 = (xs - px) ** 2 + (ys - py) ** 2
    position_w = np.exp(-balance * dist2 / (2.0 * position_sigma * position_sigma))

    hx, hy = state.trajectory_direction
    path_sigma = max(1.0, target_radius * config.path_sigma_ratio)
    if loss > 0 or reversing:
        path_sigma *= config.relaxed_path_factor
    perp = (xs - lx) * hy - (ys - ly) * hx
    path_w = np.exp(-(perp * perp) / (2.0 * path_sigma * path_sigma))

    # =============================================
    # 4. Weighted centroid + confidence
    # =============================================
    confidence = float(color_w.max())
    weights = np.where(color_w > weight_threshold, color_w * position_w * path_w, 0.0)
    total_weight = float(weights.sum())

    if confidence >= accept_threshold and total_weight > 0:
        # =============================================
        # 5. Accept
        # =============================================
        row, col = ndimage.center_of_mass(weights)
        mx = x0 + float(col) * stride
        my = y0 + float(row) * stride

        max_step = float(np.clip(
            effective_speed * config.max_step_speed_gain,
            config.min_max_step,
            max(config.min_max_step, config.max_max_step),
        ))
        cx, cy = _clamp_vector(mx - px, my - py, max_step)

        alpha = _lerp(config.displacement_alpha, config.fast_displacement_alpha, fast)
        dx = (1.0 - alpha) * vx + alpha * (px + cx - lx)
        dy = (1.0 - alpha) * vy + alpha * (py + cy - ly)

        # Smoothing can pull back toward the old velocity; keep within the clamp
        ox, oy = _clamp_vector(lx + dx - px, ly + dy - py, max_step)
        nx, ny = px + ox, py + oy
        new_velocity = _clamp_vector(nx - lx, ny - ly, config.max_velocity)

        new_reference = reference
        if confidence >= config.adapt_confidence:
            matched = sample_region_color(
                image, (nx, ny), target_radius * config.reference_sample_ratio
            )
            if matched is not None:
                new_reference = reference.blend(matched, config.adapt_rate)

        new_state = replace(
            state,
            position=(nx, ny),
            velocity=new_velocity,
            trajectory_direction=_update_heading(state.trajectory_direction, nx - lx, ny - ly, config),
            consecutive_loss_count=0,
            reference_color=new_reference,
            last_good_speed=math.hypot(*new_velocity),
        )
        return TrackResult(position=(nx, ny), confidence=confidence, lost=False, state=new_state,
                           predicted=(px, py), search_radius=search_radius)

    # =============================================
    # 6. Loss + re-acquisition
    # =============================================
    loss = min(config.max_lost_frames, loss + 1)

    if loss >= config.reacquire_after:
        hit = _reacquire(image, reference, (px, py), color_sigma, config)
        if hit is not None:
            coarse_position, hit_confidence, score = hit
            nx, ny = _refine(image, reference, coarse_position, max(2.0, target_radius),
                             color_sigma, weight_threshold)
            logger.debug(
                f"Re-acquired target at ({nx:.1f}, {ny:.1f}) after {loss} lost frames "
                f"(score={score:.2f})"
            )
            new_state = replace(
                state,
                position=(nx, ny),
                velocity=(vx * 0.5, vy * 0.5),
                consecutive_loss_count=0,
            )
            return TrackResult(position=(nx, ny), confidence=hit_confidence, lost=False,
                               state=new_state, predicted=(px, py), search_radius=search_radius,
                               reacquired=True)

    # =============================================
    # 7. Coast on the prediction
    # =============================================
    step_x, step_y = px - lx, py - ly
    if math.hypot(step_x, step_y) < config.min_loss_drift:
        step_x, step_y = _drift_direction(state, config.min_loss_drift)
    # Not clipped to the frame: a clipped coast repeats the edge position every
    # frame. Once the search window falls entirely outside, step 1 holds still.
    nx = lx + step_x
    ny = ly + step_y

    decayed = (vx * config.velocity_decay, vy * config.velocity_decay)
    if math.hypot(*decayed) < config.min_loss_drift:
        decayed = _drift_direction(state, config.min_loss_drift)

    new_state = replace(
        state,
        position=(nx, ny),
        velocity=decayed,
        consecutive_loss_count=loss,
    )
    return TrackResult(position=(nx, ny), confidence=0.0, lost=True, state=new_state,
                       predicted=(px, py), search_radius=search_radius)


def _drift_direction(state: TrackerState, magnitude: float) -> Vector:
    """Minimal coasting step, along the velocity if any, else along the heading."""
    vx, vy = state.velocity
    length = math.hypot(vx, vy)
    if length > 1e-9:
        return vx / length * magnitude, vy / length * magnitude
    hx, hy = state.trajectory_direction
    return hx * magnitude, hy * magnitude


def _update_heading(heading: Vector, dx: float, dy: float, config: TrackerConfig) -> Vector:
    """Smoothed path direction. Sign is ignored: up and down share one axis."""
    motion = math.hypot(dx, dy)
    if motion <= config.heading_min_motion:
        return heading

    dir_x, dir_y = dx / motion, dy / motion
    if dir_x * heading[0] + dir_y * heading[1] < 0:
        dir_x, dir_y = -dir_x, -dir_y

    keep = config.heading_smoothing
    hx = heading[0] * keep + dir_x * (1.0 - keep)
    hy = heading[1] * keep + dir_y * (1.0 - keep)
    length = math.hypot(hx, hy)
    if length <= 0:
        return heading
    return hx / length, hy / length


class TrackingSession:
    """
    Stateful handle over track_frame for one tracking session.

    Owns its TrackerState exclusively. Counts lost frames so the caller can
    decide when tracking has failed for good.
    """

    # Cap on "tracking lost" log lines per loss streak
    MAX_LOSS_LOGS = 5

    def __init__(
        self,
        initial_position: Vector,
        target_radius: float,
        config: Optional[TrackerConfig] = None,
        reference_color: Optional[ReferenceColor] = None
    ):
        self.target_radius = target_radius
        self.config = config or TrackerConfig()
        self.state = TrackerState(
            position=(float(initial_position[0]), float(initial_position[1])),
            reference_color=reference_color,
        )
        self.frames_tracked = 0
        self.frames_lost = 0
        self.lost_streak = 0
        self.reacquisitions = 0
        self._loss_logs = 0

    def track(self, frame: Frame) -> TrackResult:
        """Track one frame and advance the session state."""
        result = track_frame(frame, self.state, self.target_radius, self.config)
        self.state = result.state
        self.frames_tracked += 1

        if result.lost:
            self.frames_lost += 1
            self.lost_streak += 1
            if self._loss_logs < self.MAX_LOSS_LOGS:
                self._loss_logs += 1
                logger.debug(
                    f"Tracking lost at t={frame.time:.3f}s: "
                    f"search_radius={result.search_radius:.1f}, "
                    f"lost_frames={result.state.consecutive_loss_count}"
                )
        else:
            if result.reacquired:
                self.reacquisitions += 1
            self.lost_streak = 0
            self._loss_logs = 0

        return result


def begin_session(
    initial_position: Vector,
    target_radius: float,
    config: Optional[TrackerConfig] = None,
    reference_frame: Optional[Frame] = None
) -> TrackingSession:
    """
    Start tracking from the user-marked bar position.

    The reference colour is sampled from `reference_frame` when given,
    otherwise from the first tracked frame.
    """
    if not target_radius > 0:
        raise ValueError(f"target_radius must be > 0, got {target_radius}")
    x, y = initial_position
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ValueError(f"initial_position must be finite, got {initial_position}")

    config = config or TrackerConfig()
    reference = None
    if reference_frame is not None:
        if not (0 <= x < reference_frame.width and 0 <= y < reference_frame.height):
            raise ValueError(
                f"initial_position {initial_position} outside "
                f"{reference_frame.width}x{reference_frame.height} frame"
            )
        reference = sample_region_color(
            reference_frame.image, (x, y), target_radius * config.reference_sample_ratio
        )

    return TrackingSession(initial_position, target_radius, config, reference)
