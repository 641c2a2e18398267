from io import BytesIO

from conftest import get_user, login, make_user


def _switch(client, email):
    client.post("/auth/logout")
    login(client, email)


def _post(client, **payload):
    r = client.post("/api/sepbook/posts", json=payload)
    assert r.status_code == 201, r.json
    return r.json["post"]


def test_create_post_awards_xp_and_mentions(app, client):
    ana = make_user(app, "ana@cpfl.com.br", name="Ana")
    make_user(app, "beto@cpfl.com.br")
    login(client, "ana@cpfl.com.br")

    post = _post(
        client,
        content="Manutenção concluída na #subestacao com @beto.",
        location_label="SE Santos",
        location_lat=-23.96,
        location_lng=-46.33,
    )
    assert post["tags"] == ["subestacao"]
    assert post["location"] == {"label": "SE Santos", "lat": -23.96, "lng": -46.33}
    assert post["author"]["name"] == "Ana"
    assert post["has_media"] is False
    assert get_user(app, ana).xp == 5

    assert client.post("/api/sepbook/posts", json={"content": "  "}).status_code == 400
    r = client.post("/api/sepbook/posts", json={"content": "Oi", "location_lat": 120, "location_lng": 0})
    assert r.status_code == 400

    _switch(client, "beto@cpfl.com.br")
    inbox = client.get("/api/sepbook/mentions?unread=1").json["items"]
    assert len(inbox) == 1
    assert inbox[0]["post_id"] == post["id"]
    assert inbox[0]["author"]["id"] == ana
    assert client.post("/api/sepbook/mentions/read", json={}).json["updated"] == 1
    assert client.get("/api/sepbook/mentions?unread=1").json["items"] == []
    assert client.get("/api/notifications").json["items"][0]["type"] == "sepbook_mention"


def test_media_only_post_and_feed_filter(app, client):
    make_user(app, "ana@cpfl.com.br")
    login(client, "ana@cpfl.com.br")
    att = client.post(
        "/api/uploads",
        data={"file": (BytesIO(b"\x89PNG fake"), "foto.png"), "module": "sepbook"},
        content_type="multipart/form-data",
    ).json["attachments"][0]
    media = _post(client, attachments=[att])
    assert media["has_media"] is True
    assert media["attachments"][0]["kind"] == "image"
    tagged = _post(client, content="Treinamento de #resgate em altura")

    feed = client.get("/api/sepbook/feed").json["items"]
    assert [p["id"] for p in feed] == [tagged["id"], media["id"]]
    feed = client.get("/api/sepbook/feed?tag=%23Resgate").json["items"]
    assert [p["id"] for p in feed] == [tagged["id"]]


def test_comments_likes_and_rich_comment_xp(app, client):
    make_user(app, "ana@cpfl.com.br")
    beto = make_user(app, "beto@cpfl.com.br")
    login(client, "ana@cpfl.com.br")
    post = _post(client, content="Inspeção de rotina #linhaviva")

    _switch(client, "beto@cpfl.com.br")
    assert client.post(f"/api/sepbook/posts/{post['id']}/comments", json={"content": "a"}).status_code == 400
    r = client.post(f"/api/sepbook/posts/{post['id']}/comments", json={"content": "Muito bom!"})
    assert r.json["xp_awarded"] == 0
    assert r.json["comment_count"] == 1
    r = client.post(
        f"/api/sepbook/posts/{post['id']}/comments",
        json={"content": "Excelente registro @ana, vou levar para a #linhaviva da base."},
    )
    assert r.json["xp_awarded"] == 1
    assert r.json["comment_count"] == 2
    assert get_user(app, beto).xp == 1

    r = client.post(f"/api/sepbook/posts/{post['id']}/react", json={"action": "like"})
    assert r.json["like_count"] == 1
    likes = client.get(f"/api/sepbook/posts/{post['id']}/likes").json["items"]
    assert [l["id"] for l in likes] == [beto]
    feed = client.get("/api/sepbook/feed").json["items"]
    assert feed[0]["has_liked"] is True
    assert feed[0]["comment_count"] == 2
    assert client.post(f"/api/sepbook/posts/{post['id']}/react", json={"action": "unlike"}).json["like_count"] == 0

    comments = client.get(f"/api/sepbook/posts/{post['id']}/comments").json["items"]
    assert [c["content"] for c in comments][0] == "Muito bom!"

    _switch(client, "ana@cpfl.com.br")
    inbox = client.get("/api/sepbook/mentions").json["items"]
    assert inbox[0]["comment_id"] == comments[1]["id"]


def test_edit_and_moderation(app, client):
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    make_user(app, "beto@cpfl.com.br", roles=("colaborador",))
    make_user(app, "coord@cpfl.com.br", roles=("coordenador_djtx",))
    login(client, "ana@cpfl.com.br")
    post = _post(client, content="Post original")
    r = client.patch(f"/api/sepbook/posts/{post['id']}", json={"content": "Post editado #novo"})
    assert r.json["post"]["tags"] == ["novo"]

    _switch(client, "beto@cpfl.com.br")
    assert client.patch(f"/api/sepbook/posts/{post['id']}", json={"content": "hack"}).status_code == 403
    cid = client.post(f"/api/sepbook/posts/{post['id']}/comments", json={"content": "Comentário"}).json["comment"]["id"]

    _switch(client, "ana@cpfl.com.br")
    r = client.post("/api/sepbook/moderate", json={"action": "delete_comment", "comment_id": cid})
    assert r.status_code == 403
    assert client.post("/api/sepbook/moderate", json={"action": "pin_post"}).status_code == 400

    _switch(client, "coord@cpfl.com.br")
    r = client.post("/api/sepbook/moderate", json={"action": "delete_comment", "comment_id": cid})
    assert r.json["comment_count"] == 0
    r = client.post("/api/sepbook/moderate", json={"action": "delete_post", "post_id": post["id"]})
    assert r.json["deleted_post_id"] == post["id"]
    assert client.get("/api/sepbook/feed").json["items"] == []


def test_trending_tags(app, client):
    make_user(app, "ana@cpfl.com.br")
    login(client, "ana@cpfl.com.br")
    _post(client, content="#epi #altura")
    _post(client, content="#epi de novo")
    _post(client, content="#zelo")
    tags = client.get("/api/sepbook/tags").json["items"]
    assert tags == [{"tag": "epi", "count": 2}, {"tag": "altura", "count": 1}, {"tag": "zelo", "count": 1}]


def test_feed_tag_filter_is_literal(app, client):
    make_user(app, "ana@cpfl.com.br")
    login(client, "ana@cpfl.com.br")
    exact = _post(client, content="Checklist de #seg_trab revisado")
    _post(client, content="Reunião de #segxtrab amanhã")

    feed = client.get("/api/sepbook/feed?tag=seg_trab").json["items"]
    assert [p["id"] for p in feed] == [exact["id"]]
    assert client.get("/api/sepbook/feed?tag=%25").json["items"] == []
