import numpy as np
import open3d as o3d
from pathlib import Path

from .point_cloud import PointCloud


def to_open3d(cloud: PointCloud) -> o3d.geometry.PointCloud:
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.asarray(cloud.vertices, dtype=np.float64))
    pcd.colors = o3d.utility.Vector3dVector(np.clip(np.asarray(cloud.colors, dtype=np.float64), 0, 1))
    return pcd


def save_ply(cloud: PointCloud, path: str) -> Path:
    """Write the coloured point cloud as .ply."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    o3d.io.write_point_cloud(str(path), to_open3d(cloud))
    print(f"Saved point cloud to {path}")
    return path


def point_cloud_to_mesh(
    cloud: PointCloud,
    output_dir: str,
    poisson_depth: int = 9,
    normal_radius: float = 5.0,
):
    """
    Mesh a depth point cloud and save it as .ply and .stl.

    Args:
        cloud: Vertices and colours from point_cloud()
        output_dir: Folder to save mesh files
        poisson_depth: Octree depth for Poisson surface reconstruction
        normal_radius: Search radius for normal estimation, in point cloud units
    """
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    if len(cloud) == 0:
        raise ValueError("Cannot mesh an empty point cloud")

    pcd = to_open3d(cloud)

    # Estimate normals before Poisson reconstruction
    pcd.estimate_normals(search_param=o3d.geometry.KDTreeSearchParamHybrid(radius=normal_radius, max_nn=30))
    pcd.orient_normals_towards_camera_location(np.array([0.0, 0.0, 1000.0]))

    # --- Poisson reconstruction ---
    print(f"Running Poisson reconstruction (depth={poisson_depth})...")
    mesh, densities = o3d.geometry.TriangleMesh.create_from_point_cloud_poisson(pcd, depth=poisson_depth)
    if len(mesh.vertices) == 0:
        print("[INFO] Poisson returned an empty mesh, falling back to Ball Pivoting reconstruction...")
        avg_dist = np.mean(pcd.compute_nearest_neighbor_distance())
        radii = o3d.utility.DoubleVector([avg_dist, 2 * avg_dist])
        mesh = o3d.geometry.TriangleMesh.create_from_point_cloud_ball_pivoting(pcd, radii)
    mesh.compute_vertex_normals()

    # --- Save mesh files ---
    ply_path = str(Path(output_dir) / "surface_mesh.ply")
    stl_path = str(Path(output_dir) / "surface_mesh.stl")
    o3d.io.write_triangle_mesh(ply_path, mesh)
    o3d.io.write_triangle_mesh(stl_path, mesh)
    print(f"Saved mesh as:\n - {ply_path}\n - {stl_path}")

    return mesh
