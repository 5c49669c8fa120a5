"""
User-facing messages for media failures.
"""

from __future__ import annotations

DEFAULT_LOCALE = "en"

MESSAGES = {
    "en": {
        "file_too_large": "The file is too large. Please choose an image of 5MB or less.",
        "unsupported_type": "Unsupported image format. Only JPEG, PNG, GIF and WebP are supported.",
        "not_an_image": "Please choose an image file.",
        "invalid_url": "Invalid image URL.",
        "upload_conflict": "An image already exists at this location: {detail}",
        "upload_failed": "Failed to upload the image: {detail}",
        "delete_failed": "Failed to delete the image: {detail}",
        "too_many_files": "You can add at most {max_count} images.",
        "read_failed": "Failed to read the image.",
        "process_failed": "Failed to process the image.",
    },
    "ja": {
        "file_too_large": "ファイルサイズが大きすぎます。5MB以下の画像を選択してください。",
        "unsupported_type": "サポートされていない画像形式です。JPEG、PNG、GIF、WebPのみ対応しています。",
        "not_an_image": "画像ファイルを選択してください。",
        "invalid_url": "無効な画像URLです。",
        "upload_conflict": "同じ場所に画像が既に存在します: {detail}",
        "upload_failed": "画像のアップロードに失敗しました: {detail}",
        "delete_failed": "画像の削除に失敗しました: {detail}",
        "too_many_files": "画像は最大{max_count}枚までです。",
        "read_failed": "画像の読み込みに失敗しました。",
        "process_failed": "画像の変換に失敗しました。",
    },
}


def get_message(code: str, locale: str = DEFAULT_LOCALE, **kwargs) -> str:
    """Return the message for ``code``, falling back to English."""
    catalog = MESSAGES.get(locale) or MESSAGES[DEFAULT_LOCALE]
    template = catalog.get(code) or MESSAGES[DEFAULT_LOCALE][code]
    return template.format(**kwargs)
