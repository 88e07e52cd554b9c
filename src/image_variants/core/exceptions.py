"""项目内使用的自定义异常定义。"""


class ImageVariantsError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(ImageVariantsError):
    """配置不合法时抛出。"""


class SourceReadError(ImageVariantsError):
    """源图片尺寸无法读取（文件损坏或不是图片）。"""


class PathInvariantError(ImageVariantsError):
    """输出路径中生成目录标记出现多次。"""


class TranscodeError(ImageVariantsError):
    """单个（宽度, 格式）变体转码失败。"""


class PersistError(ImageVariantsError):
    """清单文件无法读取或写入，整个构建需要中止。"""


class CatalogLookupError(ImageVariantsError, KeyError):
    """清单中不存在请求的源图片。"""

    def __str__(self) -> str:
        return Exception.__str__(self)
