from app.domain.normalization import normalize_artist, normalize_isrc, normalize_string, normalize_title


def test_normalize_string_basic_cases():
    assert normalize_string("Hello World") == "hello world"
    assert normalize_string("Héllo Wörld!") == "hello world"
    assert normalize_string("  Don't   Stop_Me  ") == "don t stop me"
    assert normalize_string("") == ""
    assert normalize_string(None) == ""


def test_normalize_title_drops_version_suffixes():
    assert normalize_title("Bohemian Rhapsody (Remastered 2011)") == "bohemian rhapsody"
    assert normalize_title("Song [Live]") == "song"
    assert normalize_title("Song - Radio Edit") == "song"
    assert normalize_title("Song (Love Theme)") == "song love theme"


def test_normalize_artist_drops_featuring_and_joiners():
    assert normalize_artist("Artist feat. Someone") == "artist someone"
    assert normalize_artist("A & B") == "a b"
    assert normalize_artist("Daft Punk (FR)") == "daft punk"
    assert normalize_artist("X vs Y") == "x y"


def test_normalize_isrc_is_case_and_dash_insensitive():
    assert normalize_isrc("gb-um7-10-29601") == "GBUM71029601"
    assert normalize_isrc(" USABC1234567 ") == "USABC1234567"
    assert normalize_isrc(None) == ""


def test_normalize_isrc_accepts_numbers():
    assert normalize_isrc(123456) == "123456"
