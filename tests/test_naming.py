import re

from media_service.services.naming import (
    base_name,
    build_temp_name,
    default_image_name,
    default_peaks_name,
    peaks_entry_name,
    sanitize_filename,
)


def test_sanitize_filename_replaces_each_unsafe_character() -> None:
    assert sanitize_filename("a/b\\c?d") == "a_b_c_d"
    assert sanitize_filename('x%y*z:w|v"u<t>s') == "x_y_z_w_v_u_t_s"
    assert sanitize_filename("Ünïcode name.png") == "Ünïcode name.png"


def test_base_name_strips_extension_and_sanitizes() -> None:
    assert base_name("holiday photo.JPG") == "holiday photo"
    assert base_name("archive.tar.gz") == "archive.tar"
    assert base_name("what?.png") == "what_"
    assert base_name("README") == "README"


def test_default_image_name() -> None:
    assert default_image_name("cat", 200, None, "webp") == "cat_200xauto_webp.webp"
    assert default_image_name("cat", None, None, "jpg") == "cat_autoxauto_jpg.jpg"


def test_peaks_names() -> None:
    assert default_peaks_name("song", 120) == "song_120.json"
    assert peaks_entry_name("dense") == "dense.json"
    assert peaks_entry_name("dense.JSON") == "dense.JSON"


def test_build_temp_name_is_unique_and_prefixed() -> None:
    first = build_temp_name("audio", "MP3")
    second = build_temp_name("audio", ".mp3")

    assert re.fullmatch(r"audio_\d+_[0-9a-f]{12}\.mp3", first)
    assert second.endswith(".mp3")
    assert first != second
    assert re.fullmatch(r"audio_\d+_[0-9a-f]{12}", build_temp_name("audio"))
