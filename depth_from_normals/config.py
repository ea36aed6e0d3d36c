from pathlib import Path

class Config:
    # --- Project root resolution ---
    # This automatically finds the top-level folder (one up from /depth_from_normals)
    PROJECT_ROOT = Path(__file__).resolve().parent.parent

    # --- Input / Output paths ---
    DEFAULT_INPUT = str(PROJECT_ROOT / "NormalMaps" / "normal.png")
    DEFAULT_OUTPUT_DIR = str(PROJECT_ROOT / "Output")

    # --- Reconstruction parameters ---
    DEFAULT_QUALITY_PERCENT = 0.001
    DEFAULT_PERSPECTIVE_FACTOR = 0.0
    PERSPECTIVE_FACTOR_SCALE = 5  # user facing factor -> vignette strength
    DEFAULT_DEPTH_FACTOR = 0.15  # Z exaggeration of exported point clouds
    DEFAULT_START_FRAME = "circular"

    # --- Slope encoding ---
    # A slope byte of 127.5 means "flat". Bytes are shifted by this value before use.
    SLOPE_SHIFT = -255 / 2
    # Step vector components below this magnitude are snapped to zero
    MINIMUM_STEP = 1e-8
    # Below this a normal map channel counts as background
    MASK_EDGE = 0.001

    # --- Photometric stereo ---
    LIGHT_AZIMUTHS = (0, 45, 90, 135, 180, 225, 270, 315)  # degrees, 0 = +x, counter clockwise
    DEFAULT_MASK_THRESHOLD = 0.05  # brightest light over ambient below this is background

    # --- Threading ---
    WORKER_POLL_INTERVAL = 0.05  # seconds between completion checks of the coordinator

    # --- Shader ---
    FLOAT_PRECISION = "highp"
    LUMINANCE_WEIGHTS = (0.2126, 0.7152, 0.0722)  # Rec. 709 red, green, blue

    @staticmethod
    def ensure_dir(path: str):
        """Create directory if it doesn't exist."""
        Path(path).mkdir(parents=True, exist_ok=True)
