import base64

from hugolive.payload import (
    EMBEDDER_ORIGIN_TOKEN,
    LIVE_PREVIEW_PARTIAL,
    PAYLOAD_ENV_VAR,
    PARTIAL_RELATIVE_PATH,
    encode_payload,
    prepare_payload,
    write_live_preview_partial,
)


def test_payload_is_bound_to_embedder_origin():
    script = prepare_payload("http://hugolive.localhost")
    assert EMBEDDER_ORIGIN_TOKEN not in script
    assert '"http://hugolive.localhost"' in script


def test_encoded_payload_round_trips():
    encoded = encode_payload("http://hugolive.localhost")
    assert base64.b64decode(encoded).decode("utf-8") == prepare_payload("http://hugolive.localhost")


def test_partial_reads_the_environment_variable():
    assert PAYLOAD_ENV_VAR in LIVE_PREVIEW_PARTIAL
    assert "pageDirectory" in LIVE_PREVIEW_PARTIAL


def test_partial_is_created_once(tmp_path):
    path, created = write_live_preview_partial(tmp_path)
    assert created
    assert path == tmp_path / PARTIAL_RELATIVE_PATH
    assert path.read_text(encoding="utf-8") == LIVE_PREVIEW_PARTIAL

    path.write_text("customised", encoding="utf-8")
    again, created = write_live_preview_partial(tmp_path)
    assert again == path
    assert not created
    assert path.read_text(encoding="utf-8") == "customised"
