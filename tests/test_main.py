import depth_from_normals.main as cli
from depth_from_normals.image_io import save_image

from conftest import make_normal_map


def write_normal_map(tmp_path):
    path = tmp_path / "normal.png"
    save_image(make_normal_map(10, 8, rgb=(150, 128, 255)), str(path))
    return str(path)


def test_main_writes_depth_outputs(tmp_path, monkeypatch):
    calls = []
    extract = cli.extract_gradient

    def counting_extract(normal_map, *args, **kwargs):
        calls.append(normal_map.shape)
        return extract(normal_map, *args, **kwargs)

    monkeypatch.setattr(cli, "extract_gradient", counting_extract)
    monkeypatch.setattr("depth_from_normals.depth_map.extract_gradient", counting_extract)

    depth = cli.main(input_path=write_normal_map(tmp_path), output_dir=str(tmp_path / "out"),
                     quality=0.2, workers=2, export_obj=True)

    assert depth.shape == (8, 10)
    assert calls == [(8, 10)]
    for name in ("Depth/gradient.png", "Depth/depth.png", "Depth/depth.npy", "PointCloud/point_cloud.obj"):
        assert (tmp_path / "out" / name).exists()


def test_superseded_depth_map_writes_nothing(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(cli, "calculate_depth_map", lambda *args, **kwargs: None)

    assert cli.main(input_path=write_normal_map(tmp_path), output_dir=str(tmp_path / "out")) is None
    assert not (tmp_path / "out" / "Depth" / "depth.png").exists()
    assert "superseded" in capsys.readouterr().out
