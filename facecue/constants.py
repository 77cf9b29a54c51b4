"""
Facecue - Constants
Tunable defaults shared by the recognition pipeline components.
"""

# Stability tracking
STABILITY_THRESHOLD_SECONDS = 1.5  # Face must be held this long before recognition
RECOGNITION_COOLDOWN_SECONDS = 5.0  # Minimum gap between recognition attempts
MIN_DETECTION_CONFIDENCE = 0.7  # Landmark detector confidence floor

# Quality scoring
QUALITY_ACCEPTABLE_SCORE = 60.0
QUALITY_GOOD_SCORE = 80.0
BRIGHTNESS_SAMPLE_MAX = 100  # Brightness sampled on at most 100x100 pixels
SHARPNESS_SAMPLE_MAX_EDGE = 200  # Laplacian computed on at most 200px long edge

# Cloud face API
CLOUD_SERVICE = "rekognition"
CLOUD_TARGET_PREFIX = "RekognitionService"
CLOUD_CONTENT_TYPE = "application/x-amz-json-1.1"
CLOUD_DEFAULT_REGION = "us-east-1"
CLOUD_SIMILARITY_THRESHOLD = 70.0  # 0-100
CLOUD_JPEG_QUALITY = 80
CLOUD_REQUEST_TIMEOUT_SECONDS = 10.0
CLOUD_ATTEMPT_BUDGET_SECONDS = 30.0
CLOUD_MAX_CONCURRENCY = 1  # Sequential comparisons by default

# Offline cache
OFFLINE_MAX_RECORDS_PER_PERSON = 5
OFFLINE_MAX_RECORDS_TOTAL = 50
OFFLINE_MAX_AGE_SECONDS = 7 * 24 * 60 * 60
OFFLINE_MATCH_THRESHOLD = 0.6
OFFLINE_ORIENTATION_TOLERANCE = 0.5  # radians, roll and yaw
OFFLINE_THUMBNAIL_SIZE = 150
OFFLINE_THUMBNAIL_QUALITY = 70

# Recognition history
HISTORY_MAX_EVENTS = 500
HISTORY_MAX_AGE_SECONDS = 30 * 24 * 60 * 60
HISTORY_THUMBNAIL_SIZE = 100
HISTORY_THUMBNAIL_QUALITY = 60

# Frame capture
FRAME_CHANNEL_SIZE = 2  # Latest-frame semantics, older frames dropped
WEBCAM_WIDTH = 640
WEBCAM_HEIGHT = 480
WEBCAM_FPS = 24
WEBCAM_MAX_READ_FAILURES = 30  # Consecutive failures before the camera is treated as lost

# Status API
STATUS_API_HOST = "127.0.0.1"
STATUS_API_PORT = 6082
