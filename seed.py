"""
Demo Data Module - Import Pro
Loads the demonstration dataset (catalog, two groupages, clients, orders, ledger)
"""

from typing import Dict


def load_demo_data(db) -> Dict[str, int]:
    """
    Insert the demo dataset into an empty database.
    Returns the ids of the created rows by their demo key (a1, g1, p1, c1, o1...).
    """
    ids: Dict[str, int] = {}

    with db.atomic():
        # Catalog
        for key, name, category, description, seed in [
            ('a1', 'Sac à main Luxe', 'Mode & Accessoires', 'Cuir véritable, finition dorée', 1),
            ('a2', 'Montre Connectée', 'Électronique', 'Série 8 Ultra, étanche', 2),
            ('a3', 'Talon Aiguille Rouge', 'Chaussures', 'Taille 38-42, Velours', 3),
            ('a4', 'Tissu Bazin Riche', 'Textile & Tissus', 'Qualité supérieure, 5 yards', 4),
        ]:
            ids[key] = db.create_article(name, category, description,
                                         f"https://picsum.photos/200/200?random={seed}")

        # Groupages
        ids['g1'] = db.create_groupage(
            'Chine Octobre', '2025-10-01', '2025-10-30', status='Arrivé',
            min_advance_amount=5000, is_shipping_included=False,
            origin_country='Chine', transport_mode='Bateau',
            estimated_transport_cost=500000, estimated_customs_cost=200000)
        ids['g2'] = db.create_groupage(
            'Dubai Express Nov', '2025-11-01', '2025-11-15', status='Ouvert',
            min_advance_amount=10000, is_shipping_included=True,
            origin_country='Dubaï', transport_mode='Avion',
            estimated_transport_cost=0, estimated_customs_cost=0)

        ids['p1'] = db.create_product(
            ids['g1'], 'Sac à main Luxe', 4500, 'Pièce', 50,
            selling_options=[{'unit': 'Pièce', 'price': 12000, 'is_default': True},
                             {'unit': 'Douzaine', 'price': 130000}],
            cost_price=6000, selling_price=12000, customs_fee=500, transport_fee=1250,
            quantity_sold=45, image_url='https://picsum.photos/200/200?random=1',
            date_added='2025-10-02', supplier='Guangzhou Bags')
        ids['p3'] = db.create_product(
            ids['g1'], 'Montre Connectée', 7000, 'Pièce', 100,
            selling_options=[{'unit': 'Pièce', 'price': 18000, 'is_default': True}],
            cost_price=9000, selling_price=18000, customs_fee=800, transport_fee=1000,
            quantity_sold=20, image_url='https://picsum.photos/200/200?random=2',
            date_added='2025-10-05', supplier='Shenzhen Tech')

        # Clients
        ids['c1'] = db.create_client('Amina Diallo', '90112233', '90112233', 'Niamey',
                                     'Quartier Plateau, Rue 12', total_spent=150000)
        ids['c2'] = db.create_client('Moussa Koné', '99887766', '', 'Maradi',
                                     'Grand Marché, Boutique 45', total_spent=45000)

        # Orders
        ids['o1'] = db.create_order(
            ids['c1'], '2025-10-15',
            [{'product_id': ids['p1'], 'quantity': 2, 'unit_price': 12000, 'unit': 'Pièce'}],
            total_amount=24000, advance_paid=7200, balance_remaining=0, status='Livré',
            groupage_id=ids['g1'], is_delivery_paid=True, delivery_fee=2000,
            delivery_driver='Ali Moto', delivery_date='2025-10-16')
        ids['o2'] = db.create_order(
            ids['c2'], '2025-10-16',
            [{'product_id': ids['p1'], 'quantity': 5, 'unit_price': 12000, 'unit': 'Pièce'}],
            total_amount=60000, advance_paid=18000, balance_remaining=42000, status='Prêt à livrer',
            groupage_id=ids['g1'])
        ids['o3'] = db.create_order(
            ids['c1'], '2025-10-20',
            [{'product_id': ids['p3'], 'quantity': 1, 'unit_price': 18000, 'unit': 'Pièce'}],
            total_amount=18000, advance_paid=18000, balance_remaining=0, status='Prêt à livrer',
            groupage_id=ids['g1'])

        # Ledger
        ids['t1'] = db.create_transaction('EXPENSE', 'ACHAT_STOCK', 500000, 'Achat Stock Chine',
                                          date='2025-10-01')
        ids['t2'] = db.create_transaction('INCOME', 'VENTE', 7200, 'Acompte Amina',
                                          reference_type='order', reference_id=ids['o1'],
                                          date='2025-10-15')

    print(f"[System] Demo data loaded ({len(ids)} rows)")
    return ids
