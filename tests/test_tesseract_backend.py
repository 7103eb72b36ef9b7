# tests/test_tesseract_backend.py
from dualocr.ocr_backends.tesseract_backend import normalize_language_profile, result_from_data

COLUMNS = ("level", "page_num", "block_num", "par_num", "line_num", "word_num",
           "left", "top", "width", "height", "conf", "text")


def _data(rows):
    data = {c: [] for c in COLUMNS}
    for row in rows:
        for c, v in zip(COLUMNS, row):
            data[c].append(v)
    return data


ROWS = [
    # level, page, block, par, line, word, left, top, width, height, conf, text
    (1, 1, 0, 0, 0, 0, 0, 0, 500, 300, -1, ""),
    (2, 1, 1, 0, 0, 0, 10, 10, 400, 80, -1, ""),
    (3, 1, 1, 1, 0, 0, 10, 10, 400, 80, -1, ""),
    (4, 1, 1, 1, 1, 0, 10, 10, 300, 30, -1, ""),
    (5, 1, 1, 1, 1, 1, 10, 10, 100, 30, 96.0, "Hello"),
    (5, 1, 1, 1, 1, 2, 120, 10, 100, 30, 90.0, "world"),
    (4, 1, 1, 1, 2, 0, 10, 50, 200, 30, -1, ""),
    (5, 1, 1, 1, 2, 1, 10, 50, 200, 30, 80.0, "again"),
    (4, 1, 1, 1, 3, 0, 10, 90, 200, 30, -1, ""),
    (5, 1, 1, 1, 3, 1, 10, 90, 200, 30, 95.0, "   "),
    (2, 1, 2, 0, 0, 0, 10, 200, 400, 40, -1, ""),
    (3, 1, 2, 1, 0, 0, 10, 200, 400, 40, -1, ""),
    (4, 1, 2, 1, 1, 0, 10, 200, 150, 40, -1, ""),
    (5, 1, 2, 1, 1, 1, 10, 200, 150, 40, "-1", "second"),
]


def test_transcript_rebuilt_from_words():
    res = result_from_data(_data(ROWS))
    assert res.text == "Hello world\nagain\n\nsecond"
    assert res.words == 4
    assert res.paragraphs == 2


def test_line_records():
    res = result_from_data(_data(ROWS))
    assert [l.text for l in res.lines] == ["Hello world", "again", "second"]
    assert res.lines[0].confidence == 93.0
    assert res.lines[0].bbox == {"x0": 10, "y0": 10, "x1": 310, "y1": 40}
    # no usable confidence on the last line
    assert res.lines[2].confidence == 0.0


def test_confidence_ignores_negative_values():
    res = result_from_data(_data(ROWS))
    assert res.confidence == round((96.0 + 90.0 + 80.0) / 3, 2)


def test_empty_page():
    res = result_from_data(_data(ROWS[:4]))
    assert res.text == ""
    assert res.confidence == 0.0
    assert res.lines == ()
    assert res.words == 0
    assert res.paragraphs == 0


def test_language_profile_normalization():
    assert normalize_language_profile("kor") == "kor"
    assert normalize_language_profile("ko+en") == "kor+eng"
    assert normalize_language_profile(["en", "ko", "en"]) == "eng+kor"
    assert normalize_language_profile("eng, jpn") == "eng+jpn"
    assert normalize_language_profile(None) == "kor"
