"""Transactional email via the Resend REST API (analysis report, refund notice)"""

import html
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from config.settings import settings
from core.exceptions import (
    EmailSendException,
    EmailServiceNotConfiguredException,
    InvalidEmailException,
)
from core.logging import logger, log_structured
from models.schemas import AnalysisResult
from utils.image_utils import parse_data_uri

RESEND_API_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 15
BEST_STYLES_COUNT = 5

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and _EMAIL_PATTERN.match(email) is not None


@dataclass
class RefundEmailResult:
    admin_message_id: Optional[str]
    user_message_id: Optional[str]

    @property
    def user_notified(self) -> bool:
        return bool(self.user_message_id)


def build_report_html(analysis: AnalysisResult) -> str:
    best_styles = ", ".join(html.escape(name) for name in analysis.recommended_names[:BEST_STYLES_COUNT])
    features = ", ".join(html.escape(f.label or f.name) for f in analysis.features)
    tips = "".join(f'<li style="margin-bottom: 8px;">{html.escape(tip)}</li>' for tip in analysis.styling_tips)

    return f"""
    <div style="font-family: 'Helvetica Neue', Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">
      <div style="background-color: #1a1a2e; padding: 20px; text-align: center; border-radius: 10px 10px 0 0;">
        <h1 style="color: #ffffff; margin: 0; font-size: 24px;">Hair Director</h1>
        <p style="color: #a0a0b0; font-size: 14px; margin-top: 5px;">AI 얼굴형 분석 리포트</p>
      </div>
      <div style="padding: 30px; border: 1px solid #e0e0e0; border-top: none; border-radius: 0 0 10px 10px;">
        <h2 style="color: #4a4a4a; font-size: 20px; border-bottom: 2px solid #6c5ce7; padding-bottom: 10px;">
          고객님의 얼굴형 분석 결과
        </h2>
        <table style="width: 100%; border-collapse: collapse; margin-top: 20px;">
          <tr><td style="padding: 10px; font-weight: bold; width: 120px;">얼굴형</td>
              <td style="padding: 10px;">{html.escape(analysis.face_shape_label)}</td></tr>
          <tr><td style="padding: 10px; font-weight: bold;">피부톤</td>
              <td style="padding: 10px;">{html.escape(analysis.skin_tone_label)}</td></tr>
          <tr><td style="padding: 10px; font-weight: bold;">주요 특징</td>
              <td style="padding: 10px;">{features}</td></tr>
        </table>
        <div style="margin-top: 30px; background-color: #f0f3ff; padding: 20px; border-radius: 8px;">
          <h3 style="color: #6c5ce7; margin-top: 0;">✨ AI 추천 헤어스타일 Best {BEST_STYLES_COUNT}</h3>
          <p style="font-size: 16px; font-weight: bold; margin-bottom: 0;">{best_styles}</p>
        </div>
        <div style="margin-top: 30px;">
          <h3 style="color: #333;">💡 맞춤 스타일링 팁</h3>
          <ul style="padding-left: 20px; color: #555;">{tips}</ul>
        </div>
        <p style="margin-top: 40px; font-size: 12px; color: #888; text-align: center;">
          본 메일은 발신 전용입니다. 더 자세한 내용은
          <a href="{settings.SITE_URL}" style="color: #6c5ce7;">Hair Director</a>에서 확인하세요.
        </p>
      </div>
    </div>
    """


def build_refund_admin_html(user_email: Optional[str], reason: Optional[str], timestamp: str,
                            error_detail: Optional[str]) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; padding: 20px; border: 1px solid #ddd; max-width: 600px;">
      <h2 style="color: #e74c3c;">[헤어디렉터] 환불 요청 접수</h2>
      <p><strong>일시:</strong> {html.escape(timestamp)}</p>
      <p><strong>사용자 이메일:</strong> {html.escape(user_email or '미입력')}</p>
      <hr>
      <h3>요청 사유</h3>
      <p style="background-color: #f9f9f9; padding: 15px;">{html.escape(reason or '자동 환불 요청 (시스템 오류)')}</p>
      <h3>에러 상세 정보</h3>
      <pre style="background-color: #333; color: #fff; padding: 15px;">{html.escape(error_detail or '상세 에러 내용 없음')}</pre>
      <p style="color: #666; font-size: 12px; margin-top: 30px;">본 메일은 시스템에서 자동으로 발송되었습니다.</p>
    </div>
    """


def build_refund_user_html(timestamp: str) -> str:
    return f"""
    <div style="font-family: 'Segoe UI', Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 40px 30px;">
      <div style="text-align: center; margin-bottom: 30px;">
        <h1 style="color: #28a745; font-size: 28px; margin: 0 0 10px 0;">환불이 완료되었습니다</h1>
        <p style="color: #666; font-size: 16px; margin: 0;">결제하신 금액이 전액 환불 처리되었습니다.</p>
      </div>
      <table style="width: 100%; border-collapse: collapse; background: #f8f9fa; padding: 25px;">
        <tr><td style="padding: 8px 0; color: #666;">환불 일시</td>
            <td style="padding: 8px 0; text-align: right;">{html.escape(timestamp)}</td></tr>
        <tr><td style="padding: 8px 0; color: #666;">환불 금액</td>
            <td style="padding: 8px 0; color: #28a745; text-align: right; font-weight: bold;">{settings.REFUND_AMOUNT_LABEL} (전액)</td></tr>
        <tr><td style="padding: 8px 0; color: #666;">환불 사유</td>
            <td style="padding: 8px 0; text-align: right;">시스템 오류로 인한 자동 환불</td></tr>
      </table>
      <p style="color: #1565C0; font-size: 14px; line-height: 1.6; margin: 30px 0;">
        <strong>안내:</strong> 환불 금액은 결제 수단에 따라 3-5 영업일 이내에 원래 결제 수단으로 환불됩니다.
      </p>
      <div style="text-align: center;">
        <a href="{settings.SITE_URL}" style="display: inline-block; padding: 15px 40px; font-weight: bold;">다시 이용하기</a>
      </div>
    </div>
    """


class EmailService:
    """
    Resend client for report and refund emails

    Addresses are validated locally before any network call.
    """

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.http = session or requests.Session()

    def _send(self, payload: Dict[str, Any]) -> str:
        if not self.api_key:
            raise EmailServiceNotConfiguredException()

        try:
            response = self.http.post(
                RESEND_API_URL,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            logger.error(f"❌ Resend 네트워크 오류: {str(e)}")
            raise EmailSendException("네트워크 오류 발생")

        if not response.ok:
            logger.error(f"❌ Resend API Error: {response.status_code} {response.text[:200]}")
            raise EmailSendException()

        try:
            data = response.json()
        except ValueError:
            logger.error(f"❌ Resend 응답 파싱 실패: {response.text[:200]}")
            raise EmailSendException()
        if not isinstance(data, dict):
            raise EmailSendException()
        return data.get("id", "")

    def send_analysis_report(
        self,
        email: str,
        analysis: AnalysisResult,
        result_image: Optional[str] = None
    ) -> str:
        """
        Send the analysis report

        Args:
            email: Recipient
            analysis: Result to summarize (best 5 styles, features, tips)
            result_image: Optional grid image (data URI or base64) attached as JPEG

        Returns:
            Resend message id

        Raises:
            InvalidEmailException: Address fails local validation (no request is made)
            EmailServiceNotConfiguredException: RESEND_API_KEY missing
            EmailSendException: Provider rejected the send
        """
        if not is_valid_email(email):
            raise InvalidEmailException()

        payload: Dict[str, Any] = {
            "from": settings.EMAIL_FROM,
            "to": [email],
            "subject": f"[Hair Director] {analysis.face_shape_label} 얼굴형 분석 결과 리포트",
            "html": build_report_html(analysis),
        }

        attachments: List[Dict[str, str]] = []
        if result_image:
            try:
                _, base64_data = parse_data_uri(result_image)
                attachments.append({"filename": "hair_analysis_result.jpg", "content": base64_data})
            except ValueError as e:
                logger.warning(f"⚠️ 이미지 첨부 처리 중 오류: {str(e)}")
        if attachments:
            payload["attachments"] = attachments

        message_id = self._send(payload)
        logger.info(f"📧 분석 리포트 전송 완료: {email}")
        log_structured("report_email_sent", {"message_id": message_id})
        return message_id

    def send_refund_request(
        self,
        timestamp: str,
        user_email: Optional[str] = None,
        reason: Optional[str] = None,
        error_detail: Optional[str] = None
    ) -> RefundEmailResult:
        """
        Notify the admin of a refund and, when the address is valid, the user

        Admin delivery failures are logged; a failed user notice leaves
        `user_notified` false.
        """
        if not self.api_key:
            raise EmailServiceNotConfiguredException("서버 설정 오류: RESEND_API_KEY 누락")

        user_address = user_email if is_valid_email(user_email) else None
        logger.info(
            f"📧 환불 알림 메일 발송 시작 -> Admin: {settings.REFUND_ADMIN_EMAIL}, User: {user_address or 'N/A'}"
        )

        admin_payload: Dict[str, Any] = {
            "from": settings.EMAIL_FROM,
            "to": [settings.REFUND_ADMIN_EMAIL],
            "subject": f"[환불완료] 헤어디렉터 자동 환불 처리 ({user_email or 'Unknown User'})",
            "html": build_refund_admin_html(user_email, reason, timestamp, error_detail),
        }
        if user_address:
            admin_payload["reply_to"] = user_address

        admin_message_id = None
        try:
            admin_message_id = self._send(admin_payload)
        except EmailSendException as e:
            logger.error(f"❌ Resend API Error (Admin): {e.message}")

        user_message_id = None
        if user_address:
            try:
                user_message_id = self._send({
                    "from": settings.EMAIL_FROM,
                    "to": [user_address],
                    "subject": "[헤어디렉터] 환불이 완료되었습니다",
                    "html": build_refund_user_html(timestamp),
                })
                logger.info(f"📧 사용자 환불 알림 발송 완료: {user_address}")
            except EmailSendException as e:
                logger.error(f"❌ Resend API Error (User): {e.message}")

        log_structured("refund_email", {
            "admin_sent": bool(admin_message_id),
            "user_notified": bool(user_message_id)
        })
        return RefundEmailResult(admin_message_id=admin_message_id, user_message_id=user_message_id)


# Singleton instance
_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get or create the email service singleton"""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
