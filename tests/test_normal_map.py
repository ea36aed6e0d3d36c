import numpy as np
import pytest

from depth_from_normals.config import Config
from depth_from_normals.generation import RenderGeneration
from depth_from_normals.gradient import extract_gradient
from depth_from_normals.normal_map import photometric_stereo_normal_map, rapid_gradient_normal_map


def lambertian_images(normal, polar_angle, albedo=200.0, ambient=0.0, width=4, height=3):
    """Gray images of a plane with `normal`, one per light of Config.LIGHT_AZIMUTHS."""
    normal = np.asarray(normal, dtype=np.float64)
    normal /= np.linalg.norm(normal)
    polar = np.deg2rad(polar_angle)
    images = []
    for azimuth in np.deg2rad(Config.LIGHT_AZIMUTHS):
        light = np.array([np.sin(polar) * np.cos(azimuth), np.sin(polar) * np.sin(azimuth), np.cos(polar)])
        value = ambient + albedo * max(0.0, float(normal @ light))
        images.append(np.full((height, width), round(value), dtype=np.uint8))
    return images


def encoded(normal) -> np.ndarray:
    normal = np.asarray(normal, dtype=np.float64)
    normal /= np.linalg.norm(normal)
    vector = (normal + 1) / 2
    return np.rint(vector / np.linalg.norm(vector) * 255)


def gray(value, width=4, height=3):
    return np.full((height, width), value, dtype=np.uint8)


def test_flat_plane_points_up():
    normal_map = photometric_stereo_normal_map(lambertian_images((0, 0, 1), 30), 30)
    rgb = normal_map.buffer[..., :3].reshape(-1, 3)
    assert (rgb == [104, 104, 208]).all()
    assert (normal_map.channel(3) == 255).all()


def test_flat_plane_gives_a_flat_gradient():
    gradient = extract_gradient(photometric_stereo_normal_map(lambertian_images((0, 0, 1), 45), 45))
    slope_x, slope_y = gradient.slopes()
    assert np.abs(slope_x).max() < 1
    assert np.abs(slope_y).max() < 1


def test_tilted_plane_is_recovered():
    normal = (0.3, -0.2, 1.0)
    normal_map = photometric_stereo_normal_map(lambertian_images(normal, 30), 30)
    rgb = normal_map.buffer[..., :3].reshape(-1, 3).astype(int)
    assert np.abs(rgb - encoded(normal)).max() <= 3
    # lit more from +x and -y
    assert (rgb[:, 0] > rgb[:, 1]).all()


def test_ambient_is_subtracted_and_dark_pixels_are_masked():
    normal = (0.3, -0.2, 1.0)
    images = lambertian_images(normal, 30, ambient=30)
    for image in images:
        image[0, :] = 30  # no light reaches the top row
    normal_map = photometric_stereo_normal_map(images, 30, ambient=gray(30))

    rgb = normal_map.buffer[..., :3].astype(int)
    assert (rgb[0] == 0).all()
    assert np.abs(rgb[1:].reshape(-1, 3) - encoded(normal)).max() <= 3


def test_photometric_stereo_arguments():
    images = lambertian_images((0, 0, 1), 30)
    with pytest.raises(ValueError):
        photometric_stereo_normal_map(images[:7], 30)
    with pytest.raises(ValueError):
        photometric_stereo_normal_map(images, 0)
    with pytest.raises(ValueError):
        photometric_stereo_normal_map(images, 30, ambient=gray(0, width=5))


def test_photometric_stereo_superseded_returns_none():
    generation = RenderGeneration()
    token = generation.token()
    generation.cancel_all()
    images = lambertian_images((0, 0, 1), 30)
    assert photometric_stereo_normal_map(images, 30, token=token, generation=generation) is None


def test_rapid_gradient_flat():
    normal_map = rapid_gradient_normal_map([gray(100)] * 4, all_lights=gray(200), front=gray(200))
    assert (normal_map.buffer[..., :3].reshape(-1, 3) == [104, 104, 208]).all()


def test_rapid_gradient_tilt_towards_east():
    lights = [gray(150), gray(100), gray(50), gray(100)]  # 0, 90, 180, 270 degrees
    normal_map = rapid_gradient_normal_map(lights, all_lights=gray(200), front=gray(200))
    rgb = normal_map.buffer[..., :3].reshape(-1, 3).astype(int)
    assert np.abs(rgb - [142, 95, 189]).max() <= 1


def test_rapid_gradient_with_ambient():
    lights = [gray(130), gray(130), gray(130), gray(130)]
    normal_map = rapid_gradient_normal_map(lights, all_lights=gray(230), front=gray(230), ambient=gray(30))
    assert (normal_map.buffer[..., :3].reshape(-1, 3) == [104, 104, 208]).all()


def test_rapid_gradient_needs_four_lights():
    with pytest.raises(ValueError):
        rapid_gradient_normal_map([gray(1)] * 3, all_lights=gray(1), front=gray(1))
