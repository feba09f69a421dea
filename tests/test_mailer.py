import resend

from embrohub.services import mailer as mailer_module
from embrohub.services.mailer import NullMailer, ResendMailer, SmtpMailer, get_mailer


def test_transport_selection(monkeypatch):
    s = mailer_module.settings
    monkeypatch.setattr(s, "enable_email", True)
    monkeypatch.setattr(s, "mail_from", "orders@embro-shop.com")
    monkeypatch.setattr(s, "resend_api_key", "re_test")
    assert isinstance(get_mailer(), ResendMailer)

    monkeypatch.setattr(s, "resend_api_key", None)
    monkeypatch.setattr(s, "smtp_host", "smtp.embro-shop.com")
    assert isinstance(get_mailer(), SmtpMailer)

    monkeypatch.setattr(s, "enable_email", False)
    assert isinstance(get_mailer(), NullMailer)


def test_resend_payload_and_attachments(monkeypatch):
    calls = []

    def fake_send(params):
        calls.append(params)
        return {"id": "email-1"}

    monkeypatch.setattr(mailer_module.settings, "mail_from", "orders@embro-shop.com")
    monkeypatch.setattr(resend.Emails, "send", fake_send)

    sent = ResendMailer(api_key="re_test").send(
        "clara@embro-shop.com",
        "Your proof",
        "<p>hi</p>",
        [{"filename": "proof.pdf", "content": b"%PDF", "content_type": "application/pdf"}],
    )
    assert sent is True
    assert calls[0]["to"] == ["clara@embro-shop.com"]
    assert calls[0]["from"].endswith("<orders@embro-shop.com>")
    assert calls[0]["attachments"] == [{"filename": "proof.pdf", "content": list(b"%PDF")}]


def test_resend_failure_reports_false(monkeypatch):
    def boom(params):
        raise RuntimeError("rate limited")

    monkeypatch.setattr(resend.Emails, "send", boom)
    assert ResendMailer(api_key="re_test").send("clara@embro-shop.com", "s", "<p/>") is False
    assert NullMailer().send("clara@embro-shop.com", "s", "<p/>") is False
