"""Synthetic blob contours and their rendered images, for the test suite."""

import cv2
import numpy as np

N_LANDMARKS = 16
IMAGE_SIZE = 200


def make_shape(c1=0.0, c2=0.0, scale=50.0, rotation=0.0, center=(100.0, 100.0), n_points=N_LANDMARKS):
    """Closed egg-like contour r(θ) = 1 + 0.1·cos θ + c1·cos 2θ + c2·sin 3θ."""
    theta = np.linspace(0.0, 2.0 * np.pi, n_points, endpoint=False)
    r = 1.0 + 0.1 * np.cos(theta) + c1 * np.cos(2 * theta) + c2 * np.sin(3 * theta)
    pts = np.stack([r * np.cos(theta), r * np.sin(theta)], axis=1) * scale
    c, s = np.cos(rotation), np.sin(rotation)
    pts = pts @ np.array([[c, s], [-s, c]])
    return pts + np.asarray(center, dtype=np.float64)


def render_shape(shape, size=IMAGE_SIZE, background=40, foreground=200, sigma=1.5):
    """Anti-aliased filled polygon, slightly blurred, as a uint8 image."""
    image = np.full((size, size), background, dtype=np.uint8)
    pts = np.round(np.asarray(shape) * 16).astype(np.int32)
    cv2.fillPoly(image, [pts], int(foreground), lineType=cv2.LINE_AA, shift=4)
    return cv2.GaussianBlur(image, (0, 0), sigma)


def bounding_region(shape, dx=0.0, dy=0.0):
    lo, hi = shape.min(axis=0), shape.max(axis=0)
    return (lo[0] + dx, lo[1] + dy, hi[0] - lo[0], hi[1] - lo[1])


def mean_error(points, truth):
    return float(np.mean(np.linalg.norm(np.asarray(points, dtype=np.float64) - truth, axis=1)))
