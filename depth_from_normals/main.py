import argparse
import logging
from pathlib import Path

from .config import Config
from .depth_map import calculate_depth_map
from .evaluation import difference_map, difference_value
from .gradient import extract_gradient
from .image_io import load_image, load_normal_map, save_image, save_float_array, depth_as_float
from .point_cloud import point_cloud, save_obj
from .visualization import save_depth_plot, save_gradient_rgb, save_quality_chart


def main(
        input_path: str = Config.DEFAULT_INPUT,
        output_dir: str = Config.DEFAULT_OUTPUT_DIR,
        quality: float = Config.DEFAULT_QUALITY_PERCENT,
        perspective: float = Config.DEFAULT_PERSPECTIVE_FACTOR,
        start_frame: str = Config.DEFAULT_START_FRAME,
        workers: int = None,
        mask_path: str = None,
        ground_truth_path: str = None,
        quality_sweep: list = None,
        depth_factor: float = Config.DEFAULT_DEPTH_FACTOR,
        plot: bool = False,
        export_obj: bool = False,
        export_mesh: bool = False,
):
    depth_dir = str(Path(output_dir) / "Depth")
    cloud_dir = str(Path(output_dir) / "PointCloud")
    plot_dir = str(Path(output_dir) / "Plots")
    for d in [output_dir, depth_dir]:
        Config.ensure_dir(d)

    print(f"Input normal map: {input_path}")
    print(f"Output directory: {output_dir}")

    normal_map = load_normal_map(input_path)
    mask = load_image(mask_path) if mask_path else None
    print(f"Loaded normal map: {normal_map.width}x{normal_map.height}")

    gradient = extract_gradient(normal_map)
    depth = calculate_depth_map(
        normal_map,
        quality_percent=quality,
        perspective_factor=perspective,
        mask=mask,
        start_frame=start_frame,
        worker_count=workers,
        gradient=gradient,
    )
    if depth is None:
        print("Depth map was superseded, nothing written")
        return None

    # Save depth outputs
    save_image(gradient, str(Path(depth_dir) / "gradient.png"))
    save_image(depth, str(Path(depth_dir) / "depth.png"))
    save_float_array(depth_as_float(depth), str(Path(depth_dir) / "depth.npy"), format="npy")

    if plot:
        save_depth_plot(depth, str(Path(plot_dir) / "depth_surface.png"))
        save_gradient_rgb(gradient, str(Path(plot_dir) / "gradient_rgb.png"))

    if export_obj or export_mesh:
        cloud = point_cloud(depth, depth_factor=depth_factor)
        print(f"Point cloud with {len(cloud)} vertices")
        if export_obj:
            save_obj(cloud, str(Path(cloud_dir) / "point_cloud.obj"))
        if export_mesh:
            from .mesh_export import point_cloud_to_mesh, save_ply  # needs the optional open3d extra
            save_ply(cloud, str(Path(cloud_dir) / "point_cloud.ply"))
            point_cloud_to_mesh(cloud, cloud_dir)

    if ground_truth_path:
        truth = load_image(ground_truth_path)
        value = difference_value(difference_map(depth, truth))
        print(f"Difference to ground truth: {value:.5f} (accuracy {100 * (1 - value):.2f}%)")

        if quality_sweep:
            differences = []
            for q in quality_sweep:
                swept = calculate_depth_map(normal_map, quality_percent=q, perspective_factor=perspective,
                                            mask=mask, start_frame=start_frame, worker_count=workers,
                                            gradient=gradient)
                if swept is None:
                    print("Quality sweep was superseded")
                    return depth
                differences.append(difference_value(difference_map(swept, truth)))
                print(f" - quality {q:.4f}: difference {differences[-1]:.5f}")
            save_quality_chart(quality_sweep, differences, str(Path(plot_dir) / "quality_chart.png"))

    # Summary
    print(f"Wrote outputs to: {Path(output_dir).resolve()}")
    return depth


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Depth From Normals Pipeline")
    parser.add_argument("--input", default=Config.DEFAULT_INPUT, help="Normal map image")
    parser.add_argument("--output", default=Config.DEFAULT_OUTPUT_DIR, help="Base output directory")
    parser.add_argument("--quality", type=float, default=Config.DEFAULT_QUALITY_PERCENT,
                        help="Share of the maximum angle count (0, 1]")
    parser.add_argument("--perspective", type=float, default=Config.DEFAULT_PERSPECTIVE_FACTOR,
                        help="Perspective correction factor, 0 disables it")
    parser.add_argument("--start-frame", choices=["circular", "rectangular"], default=Config.DEFAULT_START_FRAME,
                        help="Where integration rays start")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (default: cpu count - 1)")
    parser.add_argument("--mask", default=None, help="Mask image, defaults to the normal map itself")
    parser.add_argument("--ground-truth", default=None, help="Ground truth depth map to compare against")
    parser.add_argument("--quality-sweep", type=float, nargs="+", default=None,
                        help="Qualities to compare against the ground truth")
    parser.add_argument("--depth-factor", type=float, default=Config.DEFAULT_DEPTH_FACTOR,
                        help="Z exaggeration of exported point clouds")
    parser.add_argument("--plot", action="store_true", help="Save a 3D surface plot")
    parser.add_argument("--obj", action="store_true", dest="export_obj", help="Export an OBJ point cloud")
    parser.add_argument("--mesh", action="store_true", dest="export_mesh", help="Export PLY point cloud and mesh (open3d)")
    parser.add_argument("--verbose", action="store_true", help="Show debug logs")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    main(
        input_path=args.input,
        output_dir=args.output,
        quality=args.quality,
        perspective=args.perspective,
        start_frame=args.start_frame,
        workers=args.workers,
        mask_path=args.mask,
        ground_truth_path=args.ground_truth,
        quality_sweep=args.quality_sweep,
        depth_factor=args.depth_factor,
        plot=args.plot,
        export_obj=args.export_obj,
        export_mesh=args.export_mesh,
    )
