import numpy as np
import pytest

from depth_from_normals.evaluation import difference_map, difference_value
from depth_from_normals.image_io import load_image, save_image
from depth_from_normals.pixel_grid import PixelGrid
from depth_from_normals.point_cloud import point_cloud, save_obj


def gray_grid(values) -> PixelGrid:
    values = np.asarray(values, dtype=np.uint8)
    return PixelGrid.from_array(values)


def test_identical_maps_have_no_difference():
    depth = gray_grid([[10, 200], [90, 255]])
    diff = difference_map(depth, depth)
    assert (diff.channel(0) == 0).all()
    assert difference_value(diff) == 0.0


def test_missing_surface_counts_as_full_error():
    depth = gray_grid([[0, 100], [100, 100]])
    truth = gray_grid([[100, 100], [100, 100]])
    diff = difference_map(depth, truth)
    assert diff.channel(0).tolist() == [[255, 0], [0, 0]]


def test_difference_value_skips_last_row_and_column():
    diff = np.zeros((2, 3), dtype=np.uint8)
    diff[0, 0] = 255
    diff[1, :] = 255
    diff[:, 2] = 255
    assert difference_value(gray_grid(diff)) == pytest.approx(1 / 6)


def test_difference_map_size_mismatch():
    with pytest.raises(ValueError):
        difference_map(gray_grid(np.zeros((2, 2))), gray_grid(np.zeros((2, 3))))


def test_point_cloud_skips_black_pixels():
    depth = gray_grid([[0, 255], [51, 102]])
    cloud = point_cloud(depth, depth_factor=0.15)

    assert len(cloud) == 3
    # column by column
    np.testing.assert_allclose(cloud.vertices[0], [-50.0, -25.0, 3.0])
    np.testing.assert_allclose(cloud.vertices[1], [0.0, 25.0, 15.0])
    np.testing.assert_allclose(cloud.vertices[2], [0.0, -25.0, 6.0])
    np.testing.assert_allclose(cloud.colors[1], [1.0, 1.0, 1.0])


def test_point_cloud_uses_texture_for_colour_and_selection():
    depth = gray_grid([[100, 100]])
    texture = PixelGrid.from_array(np.array([[[255, 0, 0], [0, 0, 0]]], dtype=np.uint8))
    cloud = point_cloud(depth, texture=texture)
    assert len(cloud) == 1
    np.testing.assert_allclose(cloud.colors[0], [1.0, 0.0, 0.0])


def test_save_obj(tmp_path):
    cloud = point_cloud(gray_grid([[10, 20], [30, 0]]))
    path = save_obj(cloud, str(tmp_path / "cloud" / "points.obj"))
    lines = path.read_text().splitlines()
    assert len(lines) == 3
    assert all(line.startswith("v ") and len(line.split()) == 4 for line in lines)


def test_saved_images_keep_rgb_order(tmp_path):
    img = np.zeros((2, 2, 4), dtype=np.uint8)
    img[..., 0] = 200
    img[..., 3] = 255
    path = tmp_path / "red.png"
    save_image(PixelGrid.from_array(img), str(path))
    loaded = load_image(str(path))
    np.testing.assert_array_equal(loaded.buffer, img)


def test_loading_missing_image_fails(tmp_path):
    with pytest.raises(ValueError):
        load_image(str(tmp_path / "missing.png"))


def test_ply_export(tmp_path):
    pytest.importorskip("open3d")
    from depth_from_normals.mesh_export import save_ply

    cloud = point_cloud(gray_grid([[10, 20], [30, 40]]))
    path = save_ply(cloud, str(tmp_path / "cloud.ply"))
    assert path.exists()


def test_plots_are_written(tmp_path):
    from depth_from_normals.visualization import save_depth_plot, save_quality_chart

    depth = gray_grid(np.tile(np.arange(0, 250, 50, dtype=np.uint8), (4, 1)))
    save_depth_plot(depth, str(tmp_path / "plots" / "surface.png"))
    save_quality_chart([0.01, 0.05, 0.1], [0.3, 0.2, 0.15], str(tmp_path / "plots" / "chart.png"))
    assert (tmp_path / "plots" / "surface.png").exists()
    assert (tmp_path / "plots" / "chart.png").exists()
