"""Shared fixtures: synthetic frames, trajectories and an async database."""

import asyncio

import numpy as np
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from barspeed.cv.trajectory import Trajectory
from barspeed.cv.video_source import Frame
from barspeed.models import Base

RED = (255, 0, 0)


def render_disk(width, height, center, radius, color=RED, background=(0, 0, 0)):
    """RGB image with a filled disk, drawn symmetrically around `center`."""
    image = np.empty((height, width, 3), dtype=np.uint8)
    image[:] = background
    if center is not None:
        ys, xs = np.mgrid[0:height, 0:width]
        mask = (xs - center[0]) ** 2 + (ys - center[1]) ** 2 <= radius * radius
        image[mask] = color
    return image


def run_async(scenario):
    """Run `scenario(session_factory)` against a fresh in-memory async database."""
    async def main():
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        try:
            return await scenario(async_sessionmaker(engine, expire_on_commit=False))
        finally:
            await engine.dispose()
    return asyncio.run(main())


@pytest.fixture
def disk_frame():
    """Factory: Frame with a single coloured disk."""
    def make(width=200, height=200, center=(100, 100), radius=10, color=RED, time=0.0):
        return Frame(image=render_disk(width, height, center, radius, color), time=time)
    return make


@pytest.fixture
def linear_rise():
    """Bar rising 0.5 m over 1 s at 30 samples/s, 1000 px/m."""
    trajectory = Trajectory()
    for i in range(31):
        t = i / 30.0
        height_m = 0.5 * t
        trajectory.append(0.0, 500.0 - height_m * 1000.0, t)
    return trajectory
