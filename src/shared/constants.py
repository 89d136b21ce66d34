from enum import Enum

# Имя приложения (каталоги логов и хранилища)
APP_NAME = 'AeraField'

# Origin приложения, относительно которого разрешаются относительные URL
APP_ORIGIN = 'http://localhost:3000'

# Префикс и версия разделов кэша. Версия меняется с каждым релизом,
# старые разделы удаляются при активации.
CACHE_PREFIX = 'aerafield'
CACHE_VERSION = 'v2'

# Статические ресурсы оболочки приложения (прогрев при установке)
STATIC_ASSETS = (
    '/',
    '/manifest.json',
    '/favicon.svg',
    '/icon.svg',
)

# Корневой документ, подставляемый для навигации без сети
ROOT_DOCUMENT = '/'

# Шаблоны URL тайлов. Порядок проверки фиксирован: первый совпавший
# шаблон определяет класс.
TILE_URL_PATTERNS = (
    # ESRI/ArcGIS
    r'^https://server\.arcgisonline\.com/ArcGIS/rest/services/.*/MapServer/tile/',
    r'^https://services\.arcgisonline\.com/ArcGIS/rest/services/.*/MapServer/tile/',
    r'^https://.*\.arcgisonline\.com/.*/MapServer/tile/',
    # Mapbox
    r'^https://api\.mapbox\.com/v4/.*\.(png|jpg|jpeg)(\?.*)?$',
    r'^https://.*\.tiles\.mapbox\.com/.*\.(png|jpg|jpeg)(\?.*)?$',
    # OpenStreetMap и похожие TMS
    r'^https://.*\.tile\.openstreetmap\.org/.*\.(png|jpg|jpeg)$',
    r'^https://.*\.(png|jpg|jpeg).*/\d+/\d+/\d+\.(png|jpg|jpeg)(\?.*)?$',
    # Общий вид z/y/x
    r'/\d+/\d+/\d+\.(png|jpg|jpeg)(\?.*)?$',
)

# Шаблоны URL файлов геоданных (bulk-data)
DATA_URL_PATTERNS = (r'^.*/data/.*\.geojson$',)

# Домен провайдера аутентификации
IDENTITY_HOST = 'supabase.co'

# --- Политика кэша тайлов
TILE_CACHE_MAX_ENTRIES = 2000
# Доля самых старых записей, удаляемых при превышении лимита
TILE_CACHE_EVICT_FRACTION = 0.2
# Максимальный возраст тайла (дни) для профиля с истечением срока
TILE_CACHE_MAX_AGE_DAYS = 7
# Вероятность запуска обслуживания после записи тайла (~1 из 50)
TILE_MAINTENANCE_RATE = 0.02
# Служебный заголовок с временем записи (мс с эпохи)
CACHED_TIME_HEADER = 'sw-cached-time'

# --- Сеть
# Таймаут гонки сети для профиля network_first (секунды)
TILE_NETWORK_TIMEOUT_S = 5.0
HTTP_TIMEOUT_DEFAULT = 20.0

HTTP_OK = 200
HTTP_MULTIPLE_CHOICES = 300

# Ограничение выборки URL в ответе GET_CACHE_INFO
CACHE_INFO_SAMPLE_SIZE = 5

# Имя файла SQLite хранилища
STORAGE_FILENAME = 'offline_cache.sqlite'

# Прозрачный PNG 1x1, последний резерв для тайлов
TRANSPARENT_PNG = bytes(
    [
        137, 80, 78, 71, 13, 10, 26, 10, 0, 0, 0, 13, 73, 72, 68, 82,
        0, 0, 0, 1, 0, 0, 0, 1, 8, 6, 0, 0, 0, 31, 21, 196,
        137, 0, 0, 0, 11, 73, 68, 65, 84, 120, 156, 99, 248, 15, 0, 1,
        0, 1, 0, 24, 221, 141, 219, 0, 0, 0, 0, 73, 69, 78, 68, 174,
        66, 96, 130,
    ]
)


class TrafficClass(str, Enum):
    TILE = 'tile'
    BULK_DATA = 'bulk-data'
    IDENTITY = 'identity'
    SHELL = 'shell'
    OTHER = 'other'


class PartitionKind(str, Enum):
    SHELL = 'shell'
    DATA = 'data'
    TILE = 'tile'


class TilePolicyProfile(str, Enum):
    """Профиль ограничения раздела тайлов."""

    BOUNDED_AGE = 'bounded_age'  # лимит количества + срок жизни
    COUNT_ONLY = 'count_only'  # только лимит количества


class TileStrategyProfile(str, Enum):
    """Стратегия обслуживания запросов тайлов."""

    OFFLINE_FIRST = 'offline_first'  # кэш, затем сеть, затем заглушка
    NETWORK_FIRST = 'network_first'  # сеть с таймаутом, затем кэш


class ControlMessageType(str, Enum):
    CLEAR_ALL_CACHES = 'CLEAR_ALL_CACHES'
    CLEAR_TILES_CACHE = 'CLEAR_TILES_CACHE'
    GET_CACHE_INFO = 'GET_CACHE_INFO'


class StorageBackend(str, Enum):
    SQLITE = 'sqlite'
    MEMORY = 'memory'


def default_tile_policy() -> TilePolicyProfile:
    return TilePolicyProfile.BOUNDED_AGE


def default_tile_strategy() -> TileStrategyProfile:
    return TileStrategyProfile.OFFLINE_FIRST
