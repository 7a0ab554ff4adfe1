import uploads


def test_health(client):
    assert client.get("/").json()["status"] == "ok"


def test_unknown_route_uses_error_shape(client):
    res = client.get("/nope")
    assert res.status_code == 404
    assert res.json() == {"message": "Not Found", "statusCode": 404, "error": "Not Found"}


def test_upload_image(client, buyer, tmp_path, monkeypatch):
    monkeypatch.setattr(uploads, "UPLOAD_DIR", str(tmp_path))

    res = client.post("/files/upload", files={"file": ("shirt.png", b"\x89PNG fake", "image/png")},
                      headers=buyer["headers"])

    assert res.status_code == 201, res.text
    url = res.json()["url"]
    name = url.rsplit("/", 1)[1]
    assert url.startswith("http://testserver/uploads/product_")
    assert name.endswith(".png")
    assert (tmp_path / name).read_bytes() == b"\x89PNG fake"


def test_upload_rejects_non_images(client, buyer, tmp_path, monkeypatch):
    monkeypatch.setattr(uploads, "UPLOAD_DIR", str(tmp_path))

    res = client.post("/files/upload", files={"file": ("notes.txt", b"hello", "text/plain")},
                      headers=buyer["headers"])

    assert res.status_code == 400
    assert list(tmp_path.iterdir()) == []


def test_upload_requires_login(client):
    res = client.post("/files/upload", files={"file": ("a.png", b"x", "image/png")})
    assert res.status_code == 401


def test_upload_rejects_oversized_files(client, buyer, tmp_path, monkeypatch):
    monkeypatch.setattr(uploads, "UPLOAD_DIR", str(tmp_path))
    monkeypatch.setattr(uploads, "MAX_UPLOAD_BYTES", 8)

    too_big = client.post("/files/upload", files={"file": ("big.png", b"0123456789", "image/png")},
                          headers=buyer["headers"])
    just_fits = client.post("/files/upload", files={"file": ("ok.png", b"01234567", "image/png")},
                            headers=buyer["headers"])

    assert too_big.status_code == 400
    assert just_fits.status_code == 201
    assert len(list(tmp_path.iterdir())) == 1


def test_each_upload_gets_its_own_file(client, buyer, tmp_path, monkeypatch):
    monkeypatch.setattr(uploads, "UPLOAD_DIR", str(tmp_path))

    first = client.post("/files/upload", files={"file": ("a.png", b"first", "image/png")}, headers=buyer["headers"])
    second = client.post("/files/upload", files={"file": ("b.png", b"second", "image/png")}, headers=buyer["headers"])

    assert first.json()["url"] != second.json()["url"]
    assert sorted(p.read_bytes() for p in tmp_path.iterdir()) == [b"first", b"second"]
