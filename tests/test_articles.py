# tests/test_articles.py
from logic import ARTICLE_CATEGORIES


def test_save_article_requires_name_and_category(logic):
    ok, msg, article_id = logic.save_article("", "")
    assert ok is False
    assert article_id is None
    assert logic.last_errors == {'name': True, 'category': True}
    assert logic.db.get_all_articles() == []


def test_create_and_update_article(logic):
    ok, _, article_id = logic.save_article("Pagne Wax", "Textile & Tissus", "6 yards",
                                           image_url=" https://img.example/wax.png ")
    assert ok
    article = logic.db.get_article_by_id(article_id)
    assert article['image_url'] == "https://img.example/wax.png"

    ok, _, same_id = logic.save_article("Pagne Wax Hollandais", "Textile & Tissus", article_id=article_id)
    assert ok
    assert same_id == article_id
    assert logic.db.get_article_by_id(article_id)['name'] == "Pagne Wax Hollandais"

    assert logic.save_article("X", "Divers", article_id=404)[0] is False


def test_delete_article_keeps_products(logic, demo):
    assert logic.delete_article(demo['a1'])[0]
    assert logic.db.get_article_by_id(demo['a1']) is None
    assert logic.db.get_product_by_id(demo['p1'])['name'] == 'Sac à main Luxe'
    assert logic.delete_article(demo['a1'])[0] is False


def test_list_articles_filters(logic, demo):
    assert [a['id'] for a in logic.list_articles(search="VELOURS")['items']] == [demo['a3']]
    assert [a['id'] for a in logic.list_articles(category='Électronique')['items']] == [demo['a2']]
    assert logic.list_articles(search="sac", category='Chaussures')['items'] == []


def test_list_articles_pages_of_eight(logic, demo):
    for i in range(6):
        logic.save_article(f"Article {i}", ARTICLE_CATEGORIES[-1])

    first = logic.list_articles()
    assert first['total'] == 10
    assert first['total_pages'] == 2
    assert len(first['items']) == 8
    assert len(logic.list_articles(page=2)['items']) == 2
    # Out of range pages fall back to the last page
    assert logic.list_articles(page=5)['page'] == 2


def test_product_draft_from_article(logic, demo):
    draft = logic.product_draft_from_article(demo['a2'])
    assert draft['name'] == 'Montre Connectée'
    assert draft['image_url'] == 'https://picsum.photos/200/200?random=2'
    assert draft['buying_unit'] == 'Pièce'

    # Copy, not reference
    logic.save_article("Montre Classique", "Électronique", article_id=demo['a2'])
    assert draft['name'] == 'Montre Connectée'
