from samap.services import gate

from conftest import add_response, make_sale


def test_sale_without_template_is_ready(db_session, company_id):
    sale = make_sale(db_session, company_id)

    assert gate.has_template(sale) is False
    assert gate.ready_for_signature(db_session, sale) is True
    assert gate.next_link_action(db_session, sale) == "signature"


def test_template_without_responses_blocks_signature(db_session, company_id):
    sale = make_sale(db_session, company_id, with_template=True)

    assert gate.count_questionnaire_responses(db_session, sale) == 0
    assert gate.ready_for_signature(db_session, sale) is False
    assert gate.next_link_action(db_session, sale) == "questionnaire"


def test_single_response_opens_the_gate(db_session, company_id):
    sale = make_sale(db_session, company_id, with_template=True)
    add_response(db_session, sale)

    assert gate.count_questionnaire_responses(db_session, sale) == 1
    assert gate.ready_for_signature(db_session, sale) is True


def test_responses_for_another_template_do_not_count(db_session, company_id):
    sale = make_sale(db_session, company_id, with_template=True)
    other = make_sale(db_session, company_id, with_template=True)
    add_response(db_session, other)

    assert gate.ready_for_signature(db_session, sale) is False


def test_template_without_client_never_counts_responses(db_session, company_id):
    sale = make_sale(db_session, company_id, with_template=True)
    sale.client_id = None

    assert gate.count_questionnaire_responses(db_session, sale) == 0
