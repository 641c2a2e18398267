from app.djtquest.mentions import extract_hashtags, extract_mentions
from app.djtquest.rbac import normalize_role, sanitize_role_list
from app.djtquest.utils import (
    build_team_scope,
    clamp_limit,
    derive_org,
    normalize_phone,
    parse_iso_date,
    split_hashtag_path,
    validate_password,
)


def test_normalize_phone():
    assert normalize_phone("(11) 98765-4321") == "+55 11 98765-4321"
    assert normalize_phone("+55 11 987654321") == "+55 11 98765-4321"
    assert normalize_phone("+1 21 912345678") == "+1 21 91234-5678"
    assert normalize_phone("1234") is None
    assert normalize_phone("") is None


def test_derive_org():
    assert derive_org("djtb-cub") == ("DJTB", "DJTB-CUB", "DJTB-CUB")
    assert derive_org("DJTV") == ("DJTV", "DJTV-SEDE", "DJTV")
    assert derive_org("  ") is None


def test_build_team_scope():
    teams = ["DJTB", "DJTB-CUB", "DJTB-STO", "DJTV-VOR"]
    assert build_team_scope("djtb", teams) == {"DJTB", "DJTB-CUB", "DJTB-STO"}
    assert build_team_scope("DJT", teams) == {"DJT", "DJT-PLAN", "DJT-PLA", "PLA"}
    assert build_team_scope("", teams) == set()


def test_clamp_limit():
    assert clamp_limit(None) == 50
    assert clamp_limit("abc", 20) == 20
    assert clamp_limit(0, 20) == 20
    assert clamp_limit(1000, 20, 100) == 100
    assert clamp_limit("7.9") == 7


def test_parse_iso_date():
    assert parse_iso_date("1990-05-17").isoformat() == "1990-05-17"
    assert parse_iso_date("17/05/1990") is None
    assert parse_iso_date("1990-02-31") is None


def test_validate_password():
    assert validate_password("Abcdefg1") == []
    errors = validate_password("123456")
    assert any("padrão" in e for e in errors)
    assert validate_password("Abcdefg1", "Abcdefg2") == ["As senhas não conferem."]


def test_split_hashtag_path():
    assert split_hashtag_path("#Seguranca/EPI/luvas") == ["seguranca", "epi", "luvas"]
    assert split_hashtag_path("#norma_de_seguranca") == ["norma", "seguranca"]
    assert split_hashtag_path("x/y/z/w") == ["x", "y", "z_w"]
    assert split_hashtag_path("") == []


def test_extract_mentions_and_hashtags():
    text = "Oi @joao.silva, veja @ana@cpfl.com.br. e @joao.silva de novo #EPI #epi #nr10!"
    assert extract_mentions(text) == ["joao.silva", "ana@cpfl.com.br"]
    assert extract_hashtags(text) == ["epi", "nr10"]


def test_sanitize_role_list():
    assert normalize_role(" coordenador ") == "coordenador_djtx"
    assert sanitize_role_list(["gerente", "admin", "gerente_djt", "", None, "dono", "lider_divisao"]) == [
        "gerente_djt",
        "admin",
        "gerente_divisao_djtx",
    ]
    assert sanitize_role_list(None) == []
