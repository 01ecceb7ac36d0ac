from app.constants.channels import FileType
from app.utils.text import classify_file_type, html_to_text


def test_html_to_text():
    html = "<div>Hello<br>there</div><p>Line &lt;2&gt; &amp;lt;</p>\n\n\n\n<p>end</p>"
    assert html_to_text(html) == "Hello\nthere\nLine <2> &lt;\n\nend"


def test_html_to_text_empty():
    assert html_to_text(None) == ""
    assert html_to_text("") == ""


def test_classify_file_type():
    assert classify_file_type("image/png") == FileType.IMAGE
    assert classify_file_type("VIDEO/mp4") == FileType.VIDEO
    assert classify_file_type("audio/ogg") == FileType.AUDIO
    assert classify_file_type("application/pdf") == FileType.DOCUMENT
    assert classify_file_type("application/zip") == FileType.OTHER
    assert classify_file_type(None) == FileType.OTHER
