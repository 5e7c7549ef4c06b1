from stoat.membership import add_member


async def auth(client, username="alice"):
    r = await client.post("/api/v1/auth/register", json={"username": username, "password": "password123"})
    return {"Authorization": f"Bearer {r.json()['token']}"}, r.json()["user_id"]


async def setup(client, repo):
    """alice owns a server, bob is a plain member, carol an admin, dave an outsider."""
    ha, _ = await auth(client, "alice")
    hb, bob = await auth(client, "bob")
    hc, carol = await auth(client, "carol")
    hd, _ = await auth(client, "dave")
    r = await client.post("/api/v1/servers", headers=ha, json={"name": "Test"})
    sid = r.json()["server_id"]
    async with repo.reading() as db:
        await add_member(db, sid, bob)
        await add_member(db, sid, carol, ["admin"])
        await db.commit()
    return r.json()["channels"][0]["channel_id"], ha, hb, hc, hd


async def send(client, h, channel_id, content):
    r = await client.post(f"/api/v1/channels/{channel_id}/messages", headers=h, json={"content": content})
    assert r.status_code == 201
    return r.json()


async def test_send_and_history(client, repo):
    ch, ha, hb, _, _ = await setup(client, repo)
    await send(client, ha, ch, "one")
    await send(client, hb, ch, "two")
    r = await client.get(f"/api/v1/channels/{ch}/messages", headers=ha)
    assert [m["content"] for m in r.json()["messages"]] == ["one", "two"]


async def test_history_before_cursor(client, repo):
    ch, ha, *_ = await setup(client, repo)
    ids = [(await send(client, ha, ch, str(i)))["message_id"] for i in range(5)]

    r = await client.get(f"/api/v1/channels/{ch}/messages", headers=ha, params={"limit": 2})
    assert [m["content"] for m in r.json()["messages"]] == ["3", "4"]

    r = await client.get(
        f"/api/v1/channels/{ch}/messages", headers=ha, params={"before": ids[3], "limit": 2},
    )
    assert [m["content"] for m in r.json()["messages"]] == ["1", "2"]

    r = await client.get(f"/api/v1/channels/{ch}/messages", headers=ha, params={"limit": 101})
    assert r.status_code == 422


async def test_content_length(client, repo):
    ch, ha, *_ = await setup(client, repo)
    r = await client.post(f"/api/v1/channels/{ch}/messages", headers=ha, json={"content": ""})
    assert r.status_code == 422
    assert r.json()["error"]["fields"] == ["content"]
    r = await client.post(f"/api/v1/channels/{ch}/messages", headers=ha, json={"content": "x" * 2001})
    assert r.status_code == 422


async def test_only_author_edits(client, repo):
    ch, ha, hb, hc, _ = await setup(client, repo)
    msg = await send(client, hb, ch, "mine")

    # Not even the owner or an admin may edit someone else's message
    for h in (ha, hc):
        r = await client.patch(f"/api/v1/messages/{msg['message_id']}", headers=h, json={"content": "x"})
        assert r.status_code == 403

    r = await client.patch(f"/api/v1/messages/{msg['message_id']}", headers=hb, json={"content": "edited"})
    assert r.status_code == 200
    assert r.json()["content"] == "edited"
    assert r.json()["edited_at"] is not None


async def test_delete_author_or_moderator(client, repo):
    ch, ha, hb, hc, hd = await setup(client, repo)
    m1 = await send(client, hb, ch, "1")
    m2 = await send(client, hb, ch, "2")
    m3 = await send(client, hb, ch, "3")
    m4 = await send(client, ha, ch, "4")

    assert (await client.delete(f"/api/v1/messages/{m4['message_id']}", headers=hb)).status_code == 403
    assert (await client.delete(f"/api/v1/messages/{m1['message_id']}", headers=hd)).status_code == 404
    assert (await client.delete(f"/api/v1/messages/{m1['message_id']}", headers=hb)).status_code == 204
    assert (await client.delete(f"/api/v1/messages/{m2['message_id']}", headers=hc)).status_code == 204
    assert (await client.delete(f"/api/v1/messages/{m3['message_id']}", headers=ha)).status_code == 204
    assert (await client.get(f"/api/v1/messages/{m3['message_id']}", headers=ha)).status_code == 404


async def test_outsider_cannot_post_or_read(client, repo):
    ch, *_, hd = await setup(client, repo)
    r = await client.post(f"/api/v1/channels/{ch}/messages", headers=hd, json={"content": "hi"})
    assert r.status_code == 404
    assert (await client.get(f"/api/v1/channels/{ch}/messages", headers=hd)).status_code == 404


async def test_created_at_follows_id_when_clock_steps_back(client, repo, monkeypatch):
    import stoat.ids as ids
    from stoat.resources import messages

    ch, ha, *_ = await setup(client, repo)
    me = (await client.get("/api/v1/users/@me", headers=ha)).json()["user_id"]

    ticks = [2_000_500, 1_999_500]
    monkeypatch.setattr(ids, "_last_ts", 0)
    monkeypatch.setattr(ids, "_seq", 0)
    monkeypatch.setattr(ids, "now_ms", lambda: ticks.pop(0) if len(ticks) > 1 else ticks[0])

    m1 = await messages.create_message(repo, me, ch, "first")
    m2 = await messages.create_message(repo, me, ch, "second")
    assert m1.message_id < m2.message_id
    assert m1.created_at == ids.snowflake_time(m1.message_id) == 2_000_500
    assert m2.created_at == ids.snowflake_time(m2.message_id)
    assert m2.created_at >= m1.created_at
